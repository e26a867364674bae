"""
Component contracts and shared plumbing for the record engine stores.

Each component (Type Registry, Property Catalog, Record Store, Association
Graph, Search) is described by a runtime-checkable Protocol so the engine
facade and tests can depend on the contract rather than the SQLite-backed
class. Concrete stores derive from AbstractStore, which carries the shared
database handle, the clock, and the batch runner giving every batch
operation the same independent-item semantics.
"""

from __future__ import annotations

import abc
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Protocol,
    Sequence,
    Type,
    TypeVar,
    runtime_checkable,
)

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from crm_double.domain.models import (
    AssociationLabel,
    AssociationPage,
    AssociationSpec,
    BatchError,
    BatchResult,
    LabelsBetweenObjectPair,
    ObjectType,
    ObjectTypeCreate,
    ObjectTypeUpdate,
    PropertyCreate,
    PropertyDefinition,
    PropertyUpdate,
    Record,
    RecordPage,
    SearchResult,
)
from crm_double.errors import CrmError, ValidationError, from_pydantic
from crm_double.infrastructure.db_factory import Database
from crm_double.utils.clock import Clock
from crm_double.utils.logging import get_logger

log = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)
ItemT = TypeVar("ItemT")

MAX_RECORD_BATCH = 100
MAX_PROPERTY_BATCH = 100
MAX_ASSOCIATION_CREATE_BATCH = 2000
MAX_ASSOCIATION_READ_BATCH = 1000
MAX_ASSOCIATION_ARCHIVE_BATCH = 2000


@runtime_checkable
class TypeRegistryContract(Protocol):
    def resolve(self, token: str, include_archived: bool = False) -> ObjectType: ...

    def register(self, definition: ObjectTypeCreate) -> ObjectType: ...

    def list(self, include_archived: bool = False, custom_only: bool = False) -> List[ObjectType]: ...

    def update(self, token: str, patch: ObjectTypeUpdate) -> ObjectType: ...

    def archive(self, token: str) -> None: ...


@runtime_checkable
class PropertyCatalogContract(Protocol):
    def declare(self, object_type: str, definition: PropertyCreate) -> PropertyDefinition: ...

    def get(self, object_type: str, name: str, include_archived: bool = False) -> PropertyDefinition: ...

    def list(self, object_type: str, include_archived: bool = False) -> List[PropertyDefinition]: ...

    def update(self, object_type: str, name: str, patch: PropertyUpdate) -> PropertyDefinition: ...

    def archive(self, object_type: str, name: str) -> None: ...

    def validate(self, object_type: str, properties: Dict[str, str]) -> None: ...


@runtime_checkable
class RecordStoreContract(Protocol):
    def create(self, object_type: str, properties: Dict[str, Any]) -> Record: ...

    def get(
        self,
        object_type: str,
        record_id: str,
        properties: Optional[Sequence[str]] = None,
        id_property: Optional[str] = None,
        archived: bool = False,
    ) -> Record: ...

    def list(
        self,
        object_type: str,
        properties: Optional[Sequence[str]] = None,
        limit: int = 10,
        after: Optional[str] = None,
        archived: bool = False,
    ) -> RecordPage: ...

    def update(
        self,
        object_type: str,
        record_id: str,
        properties: Dict[str, Any],
        id_property: Optional[str] = None,
    ) -> Record: ...

    def archive(self, object_type: str, record_id: str) -> None: ...

    def merge(self, object_type: str, primary_id: str, merge_id: str) -> Record: ...


@runtime_checkable
class AssociationGraphContract(Protocol):
    def associate_default(
        self, from_type: str, from_id: str, to_type: str, to_id: str
    ) -> AssociationSpec: ...

    def associate_with_labels(
        self,
        from_type: str,
        from_id: str,
        to_type: str,
        to_id: str,
        types: Sequence[Any],
    ) -> LabelsBetweenObjectPair: ...

    def get_associations(
        self,
        from_type: str,
        from_id: str,
        to_type: str,
        after: Optional[str] = None,
        limit: int = 500,
        association_type_id: Optional[int] = None,
    ) -> AssociationPage: ...

    def remove_associations(self, from_type: str, from_id: str, to_type: str, to_id: str) -> None: ...

    def list_labels(self, from_type: str, to_type: str) -> List[AssociationLabel]: ...


@runtime_checkable
class SearchContract(Protocol):
    def search(self, object_type: str, request: Any) -> SearchResult: ...


def check_batch_size(items: Sequence[Any], cap: int, what: str = "inputs") -> None:
    """
    Reject an oversized batch before any storage access.

    Raises
    ------
    ValidationError
        If `items` holds more than `cap` entries.
    """
    if len(items) > cap:
        raise ValidationError(f"Batch {what} limit exceeded: got {len(items)}, maximum is {cap}")


def coerce(model: Type[M], value: Any, message: str = "Invalid input") -> M:
    """Validate a dict (or pass through a model) as `model`, raising ValidationError."""
    if isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except PydanticValidationError as exc:
        raise from_pydantic(exc, message) from exc


def coerce_all(model: Type[M], values: Iterable[Any], message: str = "Invalid input") -> List[M]:
    return [coerce(model, value, message) for value in values]


class AbstractStore(abc.ABC):
    """
    Base class for SQLite-backed components.

    Subclasses set `name` and receive the shared Database and Clock.
    """

    name: str

    def __init__(self, db: Database, clock: Optional[Clock] = None) -> None:
        self.db = db
        self.clock = clock or Clock()

    def now(self) -> str:
        return self.clock.timestamp()

    def run_batch(
        self,
        items: Sequence[ItemT],
        handler: Callable[[ItemT], Any],
        context: Callable[[ItemT], Dict[str, List[str]]],
    ) -> BatchResult[Any]:
        """
        Run `handler` once per item, each in its own savepoint.

        A CrmError raised by one item rolls back only that item and is
        recorded as a BatchError; other exceptions propagate and abort the
        whole batch. Handlers returning None contribute no result entry.
        """
        result: BatchResult[Any] = BatchResult(started_at=self.now())
        with self.db.transaction():
            for item in items:
                try:
                    with self.db.transaction():
                        produced = handler(item)
                except CrmError as exc:
                    log.warning(
                        "Batch item failed",
                        extra={"store": self.name, "category": exc.category, "error": exc.message},
                    )
                    result.errors.append(
                        BatchError(category=exc.category, message=exc.message, context=context(item))
                    )
                    continue
                if produced is not None:
                    result.results.append(produced)
        result.num_errors = len(result.errors)
        result.completed_at = self.now()
        return result


__all__ = [
    "AbstractStore",
    "AssociationGraphContract",
    "MAX_ASSOCIATION_ARCHIVE_BATCH",
    "MAX_ASSOCIATION_CREATE_BATCH",
    "MAX_ASSOCIATION_READ_BATCH",
    "MAX_PROPERTY_BATCH",
    "MAX_RECORD_BATCH",
    "PropertyCatalogContract",
    "RecordStoreContract",
    "SearchContract",
    "TypeRegistryContract",
    "check_batch_size",
    "coerce",
    "coerce_all",
]
