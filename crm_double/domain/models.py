"""
Domain models for crm-double.

Pydantic models for every entity the record engine persists and for the
request/result shapes its components exchange. Field names are snake_case in
Python; `model_dump(by_alias=True, exclude_none=True)` yields the upstream
camelCase wire shape, and incoming dicts may use either form.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class CamelModel(BaseModel):
    """Base model accepting and emitting camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


# ---------------------------------------------------------------------------
# Type Registry
# ---------------------------------------------------------------------------


class ObjectType(CamelModel):
    """
    Resolved object-type descriptor. Built-in ids follow "0-N", custom "2-N".
    """

    id: str
    name: str
    label_singular: str
    label_plural: str
    primary_display_property: Optional[str] = None
    is_custom: bool = False
    fully_qualified_name: Optional[str] = None
    description: Optional[str] = None
    archived: bool = False
    created_at: str
    updated_at: str


class ObjectTypeCreate(CamelModel):
    name: str
    label_singular: str
    label_plural: str
    primary_display_property: Optional[str] = None
    description: Optional[str] = None
    properties: List["PropertyCreate"] = Field(default_factory=list)
    associated_objects: List[str] = Field(default_factory=list)


class ObjectTypeUpdate(CamelModel):
    label_singular: Optional[str] = None
    label_plural: Optional[str] = None
    primary_display_property: Optional[str] = None
    description: Optional[str] = None


# ---------------------------------------------------------------------------
# Property Catalog
# ---------------------------------------------------------------------------


class PropertyType(str, Enum):
    BOOL = "bool"
    ENUMERATION = "enumeration"
    DATE = "date"
    DATETIME = "datetime"
    STRING = "string"
    NUMBER = "number"


class PropertyOption(CamelModel):
    label: str
    value: str
    display_order: int = 0
    hidden: bool = False


class PropertyDefinition(CamelModel):
    """
    Declared property for one object type, keyed by (object_type_id, name).
    """

    object_type_id: str = Field(..., exclude=True)
    name: str
    label: str
    type: str
    field_type: str
    group_name: str = ""
    description: str = ""
    display_order: int = 0
    has_unique_value: bool = False
    hidden: bool = False
    form_field: bool = False
    calculated: bool = False
    external_options: bool = False
    hubspot_defined: bool = False
    options: List[PropertyOption] = Field(default_factory=list)
    archived: bool = False
    archived_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def option_values(self) -> List[str]:
        return [option.value for option in self.options]


class PropertyCreate(CamelModel):
    name: str = Field(..., min_length=1)
    label: str = Field(..., min_length=1)
    type: PropertyType
    field_type: str = "text"
    group_name: Optional[str] = None
    description: str = ""
    display_order: int = 0
    has_unique_value: bool = False
    hidden: bool = False
    form_field: bool = False
    options: List[PropertyOption] = Field(default_factory=list)


class PropertyUpdate(CamelModel):
    label: Optional[str] = None
    type: Optional[PropertyType] = None
    field_type: Optional[str] = None
    group_name: Optional[str] = None
    description: Optional[str] = None
    display_order: Optional[int] = None
    hidden: Optional[bool] = None
    form_field: Optional[bool] = None
    options: Optional[List[PropertyOption]] = None


class PropertyGroup(CamelModel):
    name: str = Field(..., min_length=1)
    label: str = Field(..., min_length=1)
    display_order: int = 0
    archived: bool = False


# ---------------------------------------------------------------------------
# Record Store
# ---------------------------------------------------------------------------


class PropertyHistoryEntry(CamelModel):
    value: Optional[str] = None
    timestamp: str
    source_type: Optional[str] = None
    source_id: Optional[str] = None


class Record(CamelModel):
    """
    A single CRM record with its (projected) property values.

    `id` is the monotonic integer row id rendered as a string.
    """

    id: str
    properties: Dict[str, Optional[str]] = Field(default_factory=dict)
    properties_with_history: Optional[Dict[str, List[PropertyHistoryEntry]]] = None
    created_at: str
    updated_at: str
    archived: bool = False
    archived_at: Optional[str] = None
    merged_into_id: Optional[str] = Field(None, exclude=True)
    new: Optional[bool] = None


class PagingNext(CamelModel):
    after: str


class Paging(CamelModel):
    next: PagingNext


class RecordPage(CamelModel):
    results: List[Record] = Field(default_factory=list)
    paging: Optional[Paging] = None

    @property
    def next_after(self) -> Optional[str]:
        return self.paging.next.after if self.paging else None


class RecordInput(CamelModel):
    """Properties for one record to create."""

    properties: Dict[str, str] = Field(default_factory=dict)

    @field_validator("properties", mode="before")
    @classmethod
    def _stringify_values(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k): _stringify(v) for k, v in value.items()}
        return value


class RecordUpdateInput(RecordInput):
    id: str
    id_property: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return _stringify(value) if isinstance(value, (int, float)) else value


class RecordUpsertInput(RecordInput):
    id: Optional[str] = None
    id_property: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return _stringify(value) if isinstance(value, (int, float)) else value


class BatchError(CamelModel):
    """Failure of one batch item; the rest of the batch carries on."""

    status: str = "error"
    category: str
    message: str
    context: Dict[str, List[str]] = Field(default_factory=dict)


class BatchResult(CamelModel, Generic[T]):
    status: str = "COMPLETE"
    results: List[T] = Field(default_factory=list)
    errors: List[BatchError] = Field(default_factory=list)
    num_errors: int = 0
    started_at: str
    completed_at: Optional[str] = None


# ---------------------------------------------------------------------------
# Association Graph
# ---------------------------------------------------------------------------


class AssociationCategory(str, Enum):
    HUBSPOT_DEFINED = "HUBSPOT_DEFINED"
    USER_DEFINED = "USER_DEFINED"
    INTEGRATOR_DEFINED = "INTEGRATOR_DEFINED"


class AssociationSpec(CamelModel):
    """Reference to one association type, as sent by callers."""

    association_category: AssociationCategory
    association_type_id: int


class AssociationLabel(CamelModel):
    """Label catalog entry for one directed type pair."""

    category: AssociationCategory
    type_id: int
    label: Optional[str] = None
    inverse_label: Optional[str] = None


class AssociationType(CamelModel):
    """Edge type attached to an association read. Orphaned ids carry only type_id."""

    type_id: int
    category: Optional[str] = None
    label: Optional[str] = None


class AssociationResult(CamelModel):
    to_object_id: str
    association_types: List[AssociationType] = Field(default_factory=list)


class AssociationPage(CamelModel):
    results: List[AssociationResult] = Field(default_factory=list)
    paging: Optional[Paging] = None

    @property
    def next_after(self) -> Optional[str]:
        return self.paging.next.after if self.paging else None


class LabelsBetweenObjectPair(CamelModel):
    from_object_type_id: str
    from_object_id: str
    to_object_type_id: str
    to_object_id: str
    labels: List[str] = Field(default_factory=list)


class ObjectRef(CamelModel):
    id: str

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return _stringify(value) if isinstance(value, (int, float)) else value


class AssociationInput(CamelModel):
    """One directed pair of records, optionally with the types to write or remove."""

    from_: ObjectRef = Field(..., alias="from")
    to: ObjectRef
    types: List[AssociationSpec] = Field(default_factory=list)


class AssociationArchiveInput(CamelModel):
    from_: ObjectRef = Field(..., alias="from")
    to: List[ObjectRef] = Field(default_factory=list)


class DefaultAssociationResult(CamelModel):
    from_: ObjectRef = Field(..., alias="from")
    to: ObjectRef
    association_spec: AssociationSpec


class AssociationBatchReadResult(CamelModel):
    from_: ObjectRef = Field(..., alias="from")
    to: List[AssociationResult] = Field(default_factory=list)
    paging: Optional[Paging] = None


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


class FilterOperator(str, Enum):
    EQ = "EQ"
    NEQ = "NEQ"
    LT = "LT"
    LTE = "LTE"
    GT = "GT"
    GTE = "GTE"
    BETWEEN = "BETWEEN"
    IN = "IN"
    NOT_IN = "NOT_IN"
    HAS_PROPERTY = "HAS_PROPERTY"
    NOT_HAS_PROPERTY = "NOT_HAS_PROPERTY"
    CONTAINS_TOKEN = "CONTAINS_TOKEN"
    NOT_CONTAINS_TOKEN = "NOT_CONTAINS_TOKEN"


class SortDirection(str, Enum):
    ASCENDING = "ASCENDING"
    DESCENDING = "DESCENDING"


class Filter(CamelModel):
    # Operators stay free-form here; the compiler rejects unknown literals
    # with a ValidationError naming the operator.
    property_name: str = ""
    operator: str
    value: Optional[str] = None
    high_value: Optional[str] = None
    values: Optional[List[str]] = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )

    @field_validator("value", "high_value", mode="before")
    @classmethod
    def _stringify_bool(cls, value: Any) -> Any:
        return _stringify(value) if isinstance(value, bool) else value


class FilterGroup(CamelModel):
    filters: List[Filter] = Field(default_factory=list)


class Sort(CamelModel):
    property_name: str
    direction: str = SortDirection.ASCENDING.value


class SearchRequest(CamelModel):
    query: Optional[str] = None
    filter_groups: List[FilterGroup] = Field(default_factory=list)
    sorts: List[Sort] = Field(default_factory=list)
    properties: List[str] = Field(default_factory=list)
    limit: Optional[int] = None
    after: Optional[str] = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )

    @field_validator("sorts", mode="before")
    @classmethod
    def _shorthand_sorts(cls, value: Any) -> Any:
        # "-createdate" is accepted as shorthand for a descending sort.
        if not isinstance(value, list):
            return value
        converted = []
        for item in value:
            if isinstance(item, str):
                descending = item.startswith("-")
                converted.append(
                    {
                        "propertyName": item.lstrip("-"),
                        "direction": "DESCENDING" if descending else "ASCENDING",
                    }
                )
            else:
                converted.append(item)
        return converted


class SearchResult(CamelModel):
    total: int
    results: List[Record] = Field(default_factory=list)
    paging: Optional[Paging] = None

    @property
    def next_after(self) -> Optional[str]:
        return self.paging.next.after if self.paging else None


ObjectTypeCreate.model_rebuild()


__all__ = [
    "AssociationArchiveInput",
    "AssociationBatchReadResult",
    "AssociationCategory",
    "AssociationInput",
    "AssociationLabel",
    "AssociationPage",
    "AssociationResult",
    "AssociationSpec",
    "AssociationType",
    "BatchError",
    "BatchResult",
    "CamelModel",
    "DefaultAssociationResult",
    "Filter",
    "FilterGroup",
    "FilterOperator",
    "LabelsBetweenObjectPair",
    "ObjectRef",
    "ObjectType",
    "ObjectTypeCreate",
    "ObjectTypeUpdate",
    "Paging",
    "PagingNext",
    "PropertyCreate",
    "PropertyDefinition",
    "PropertyGroup",
    "PropertyHistoryEntry",
    "PropertyOption",
    "PropertyType",
    "PropertyUpdate",
    "Record",
    "RecordInput",
    "RecordPage",
    "RecordUpdateInput",
    "RecordUpsertInput",
    "SearchRequest",
    "SearchResult",
    "Sort",
    "SortDirection",
]
