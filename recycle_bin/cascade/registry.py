"""
Cascade configuration registry.

Maps each root entity type (a SQLAlchemy mapped class) to the blockers that
can veto its deletion and the ordered list of dependent-record selectors
that are snapshotted and deleted with it.

Usage:
    registry = CascadeRegistry()
    registry.register(
        Employee,
        CascadeConfig(
            blockers=[
                count_blocker(
                    Payroll,
                    "employee_id",
                    "Cannot delete: {count} payroll record(s) exist for this employee.",
                ),
            ],
            snapshot_order=[
                DependentSelector(
                    LeaveRequestItem,
                    by_parent(LeaveRequestItem, "leave_request_id", LeaveRequest, "employee_id"),
                ),
                DependentSelector(LeaveRequest, by_foreign_key(LeaveRequest, "employee_id")),
            ],
        ),
    )
"""

import importlib
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Type

from sqlalchemy import func, select
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Session

from .exceptions import UnknownEntityType

logger = logging.getLogger(__name__)

Blocker = Callable[[Session, Any], Optional[str]]
Selector = Callable[[Session, Any], Iterable[Any]]


def entity_type_of(entity_or_model: Any) -> str:
    """Entity type name of a mapped instance or class."""
    model = entity_or_model if isinstance(entity_or_model, type) else type(entity_or_model)
    return model.__name__


def table_name_of(model: Type[Any]) -> str:
    """Name of the table a mapped class persists to."""
    return sa_inspect(model).local_table.name


def spans_several_tables(model: Type[Any]) -> bool:
    """Check whether a mapped class persists to more than one table."""
    return len(sa_inspect(model).tables) > 1


def model_path_of(model: Type[Any]) -> str:
    """Importable ``module:QualName`` path of a class."""
    return f"{model.__module__}:{model.__qualname__}"


def import_model(path: str) -> Optional[Type[Any]]:
    """
    Import a class from a ``module:QualName`` path.

    Returns:
        The class, or None when the path no longer resolves to one
    """
    module_name, _, qualname = path.partition(":")
    try:
        target: Any = importlib.import_module(module_name)
        for part in qualname.split("."):
            target = getattr(target, part)
    except (ImportError, AttributeError, ValueError) as e:
        logger.debug(f"Cannot import model {path}: {e}")
        return None
    return target if isinstance(target, type) else None


@dataclass
class DependentSelector:
    """One tier of dependent records: which model, how to find them, which table."""

    model: Type[Any]
    selector: Selector
    table_name: Optional[str] = None

    def __post_init__(self) -> None:
        if self.table_name is None:
            self.table_name = table_name_of(self.model)

    @property
    def entity_type(self) -> str:
        return entity_type_of(self.model)

    def select(self, session: Session, root: Any) -> List[Any]:
        """Evaluate the selector against the root entity."""
        return list(self.selector(session, root))


@dataclass
class CascadeConfig:
    """Blockers and deepest-first dependent selectors for one entity type."""

    blockers: List[Blocker] = field(default_factory=list)
    snapshot_order: List[DependentSelector] = field(default_factory=list)
    display_name: Optional[Callable[[Any], str]] = None


def by_foreign_key(model: Type[Any], column: str, attribute: str = "id") -> Selector:
    """
    Select ``model`` rows whose ``column`` equals the root's ``attribute``.

    Args:
        model: Dependent mapped class
        column: Foreign key column on the dependent
        attribute: Attribute of the root the foreign key points at
    """

    def select_children(session: Session, root: Any) -> List[Any]:
        stmt = select(model).where(getattr(model, column) == getattr(root, attribute))
        return list(session.scalars(stmt).all())

    return select_children


def by_parent(
    model: Type[Any],
    column: str,
    parent_model: Type[Any],
    parent_column: str,
    parent_key: str = "id",
    attribute: str = "id",
) -> Selector:
    """
    Select grandchildren of the root through an intermediate parent table.

    Returns ``model`` rows whose ``column`` is the ``parent_key`` of a
    ``parent_model`` row whose ``parent_column`` equals the root's
    ``attribute``.
    """

    def select_grandchildren(session: Session, root: Any) -> List[Any]:
        parent_ids = select(getattr(parent_model, parent_key)).where(
            getattr(parent_model, parent_column) == getattr(root, attribute)
        )
        stmt = select(model).where(getattr(model, column).in_(parent_ids))
        return list(session.scalars(stmt).all())

    return select_grandchildren


def count_blocker(
    model: Type[Any], column: str, message: str, attribute: str = "id"
) -> Blocker:
    """
    Block deletion while ``model`` rows reference the root.

    Args:
        model: Referencing mapped class
        column: Column on ``model`` referencing the root
        message: Reason template; ``{count}`` is replaced by the row count
        attribute: Attribute of the root being referenced
    """

    def check(session: Session, root: Any) -> Optional[str]:
        stmt = (
            select(func.count())
            .select_from(model)
            .where(getattr(model, column) == getattr(root, attribute))
        )
        count = session.scalar(stmt) or 0
        if count > 0:
            return message.format(count=count)
        return None

    return check


class CascadeRegistry:
    """
    Registry of cascade configurations keyed by entity type name.

    Also remembers every mapped class it has seen so that entity type names
    can be resolved back to a class. Names are unique: two classes with the
    same ``__name__`` cannot both be registered.
    """

    def __init__(self) -> None:
        self._configs: Dict[str, CascadeConfig] = {}
        self._models: Dict[str, Type[Any]] = {}

    def register(self, model: Type[Any], config: CascadeConfig) -> CascadeConfig:
        """
        Register the cascade configuration of a root entity type.

        Raises:
            ValueError: If the snapshot order would delete a table before a
                later tier that still references it, if a model spans
                several tables, or if another class already owns the name.
        """
        for tier_model in (model, *(dep.model for dep in config.snapshot_order)):
            if spans_several_tables(tier_model):
                raise ValueError(
                    f"{entity_type_of(tier_model)} is mapped to several tables; "
                    "joined-table inheritance is not supported"
                )
        self._check_order(model, config)

        self.register_model(model, *(dep.model for dep in config.snapshot_order))
        self._configs[entity_type_of(model)] = config
        return config

    def register_model(self, *models: Type[Any]) -> None:
        """
        Make mapped classes resolvable by entity type name.

        Raises:
            ValueError: If a different class is already registered under the
                same name
        """
        for model in models:
            entity_type = entity_type_of(model)
            known = self._models.get(entity_type)
            if known is not None and known is not model:
                raise ValueError(
                    f"Entity type {entity_type} is already registered for "
                    f"{model_path_of(known)}; cannot register {model_path_of(model)}"
                )
        for model in models:
            self._models[entity_type_of(model)] = model

    def register_declarative_base(self, base: Any) -> None:
        """Register every class mapped by a declarative base."""
        for mapper in base.registry.mappers:
            self.register_model(mapper.class_)

    def get(self, entity_or_model: Any) -> Optional[CascadeConfig]:
        """Cascade configuration for an entity or class, if any."""
        return self._configs.get(entity_type_of(entity_or_model))

    def resolve_model(
        self, entity_type: str, model_path: Optional[str] = None
    ) -> Type[Any]:
        """
        Resolve an entity type name to its mapped class.

        A ``model_path`` recorded when the entity was deleted takes
        precedence, so deletions of types this registry never saw stay
        restorable after a restart.

        Raises:
            UnknownEntityType: If neither the path nor the name resolves
        """
        if model_path:
            model = import_model(model_path)
            if model is not None and entity_type_of(model) == entity_type:
                return model

        try:
            return self._models[entity_type]
        except KeyError:
            raise UnknownEntityType(entity_type) from None

    @property
    def entity_types(self) -> List[str]:
        """Entity types with a cascade configuration."""
        return sorted(self._configs)

    def __contains__(self, entity_or_model: Any) -> bool:
        return entity_type_of(entity_or_model) in self._configs

    @staticmethod
    def _check_order(model: Type[Any], config: CascadeConfig) -> None:
        # A table may only be emptied once no later tier references it
        tiers = [(dep.table_name, dep.model) for dep in config.snapshot_order]
        tiers.append((table_name_of(model), model))

        references: Dict[str, set] = {}
        for table_name, tier_model in tiers:
            foreign_keys = sa_inspect(tier_model).local_table.foreign_keys
            references.setdefault(table_name, set()).update(
                fk.column.table.name for fk in foreign_keys
            )

        for position, (table_name, _) in enumerate(tiers):
            for later, _ in tiers[position + 1 :]:
                if later != table_name and table_name in references[later]:
                    raise ValueError(
                        f"Invalid snapshot order for {entity_type_of(model)}: "
                        f"{later} references {table_name} and must come before it"
                    )
