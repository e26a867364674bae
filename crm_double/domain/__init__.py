"""
Domain package for crm-double.

Exports the pydantic models shared by the stores, the engine facade and the
CLI. Keep this package focused on data definitions and validation concerns.
"""

from crm_double.domain.models import (
    AssociationCategory,
    AssociationInput,
    AssociationPage,
    AssociationSpec,
    BatchError,
    BatchResult,
    FilterOperator,
    LabelsBetweenObjectPair,
    ObjectType,
    ObjectTypeCreate,
    ObjectTypeUpdate,
    PropertyCreate,
    PropertyDefinition,
    PropertyGroup,
    PropertyType,
    PropertyUpdate,
    Record,
    RecordPage,
    SearchRequest,
    SearchResult,
)

__all__ = [
    "AssociationCategory",
    "AssociationInput",
    "AssociationPage",
    "AssociationSpec",
    "BatchError",
    "BatchResult",
    "FilterOperator",
    "LabelsBetweenObjectPair",
    "ObjectType",
    "ObjectTypeCreate",
    "ObjectTypeUpdate",
    "PropertyCreate",
    "PropertyDefinition",
    "PropertyGroup",
    "PropertyType",
    "PropertyUpdate",
    "Record",
    "RecordPage",
    "SearchRequest",
    "SearchResult",
]
