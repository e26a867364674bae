"""
Stores package for crm-double.

This module re-exports the component contracts and the SQLite-backed
implementations so downstream code can import from `crm_double.store`
directly.
"""

from crm_double.store.abstract import (
    AbstractStore,
    AssociationGraphContract,
    PropertyCatalogContract,
    RecordStoreContract,
    SearchContract,
    TypeRegistryContract,
)
from crm_double.store.associations import AssociationGraph
from crm_double.store.properties import PropertyCatalog
from crm_double.store.records import RecordStore
from crm_double.store.search import SearchCompiler, SearchService
from crm_double.store.types import TypeRegistry

__all__ = [
    # Contracts
    "AbstractStore",
    "AssociationGraphContract",
    "PropertyCatalogContract",
    "RecordStoreContract",
    "SearchContract",
    "TypeRegistryContract",
    # Concrete stores
    "AssociationGraph",
    "PropertyCatalog",
    "RecordStore",
    "SearchCompiler",
    "SearchService",
    "TypeRegistry",
]
