"""
Type Registry: resolves object-type tokens and registers custom types.

A token resolves by exact name first, then by exact id, among non-archived
types. Built-in types carry "0-N" ids and are seeded at startup; custom
types are registered at runtime with the next "2-N" id and become
resolvable by both forms immediately.
"""

from __future__ import annotations

import re
import sqlite3
from typing import Any, List, Optional

from crm_double.domain.models import (
    AssociationCategory,
    ObjectType,
    ObjectTypeCreate,
    ObjectTypeUpdate,
    PropertyCreate,
    PropertyType,
)
from crm_double.errors import ConflictError, NotFoundError, ValidationError
from crm_double.infrastructure.seed import COMMON_PROPERTIES
from crm_double.store.abstract import AbstractStore, coerce
from crm_double.store.properties import insert_property
from crm_double.utils.logging import get_logger

log = get_logger(__name__)

NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")
CUSTOM_PREFIX = "2-"
FULLY_QUALIFIED_PREFIX = "p0_"


def _row_to_type(row: sqlite3.Row) -> ObjectType:
    return ObjectType(
        id=row["id"],
        name=row["name"],
        label_singular=row["label_singular"],
        label_plural=row["label_plural"],
        primary_display_property=row["primary_display_property"],
        is_custom=bool(row["is_custom"]),
        fully_qualified_name=row["fully_qualified_name"],
        description=row["description"],
        archived=bool(row["archived"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def ensure_default_association_type(conn: sqlite3.Connection, from_type: str, to_type: str) -> int:
    """
    Return the lowest-id unlabeled HUBSPOT_DEFINED type for a directed pair,
    creating a generic one when none exists.
    """
    row = conn.execute(
        """
        SELECT MIN(id) AS id FROM association_types
        WHERE from_object_type = ? AND to_object_type = ?
          AND category = ? AND label IS NULL
        """,
        (from_type, to_type, AssociationCategory.HUBSPOT_DEFINED.value),
    ).fetchone()
    if row is not None and row["id"] is not None:
        return int(row["id"])
    cursor = conn.execute(
        """
        INSERT INTO association_types (from_object_type, to_object_type, category, label)
        VALUES (?, ?, ?, NULL)
        """,
        (from_type, to_type, AssociationCategory.HUBSPOT_DEFINED.value),
    )
    log.debug(
        "Created default association type",
        extra={"from_type": from_type, "to_type": to_type, "type_id": cursor.lastrowid},
    )
    return int(cursor.lastrowid)


class TypeRegistry(AbstractStore):
    """
    SQLite-backed Type Registry.

    Example
    -------
        registry = TypeRegistry(db)
        registry.resolve("contacts").id   # "0-1"
        registry.resolve("0-1").name      # "contacts"
    """

    name = "types"

    def resolve(self, token: str, include_archived: bool = False) -> ObjectType:
        """
        Resolve a type name or id.

        Raises
        ------
        NotFoundError
            If neither form matches a (non-archived, unless requested) type.
        """
        archived_clause = "" if include_archived else " AND archived = 0"
        with self.db.connection() as conn:
            for column in ("name", "id"):
                row = conn.execute(
                    f"SELECT * FROM object_types WHERE {column} = ?{archived_clause} "
                    "ORDER BY archived, created_at DESC LIMIT 1",
                    (token,),
                ).fetchone()
                if row is not None:
                    return _row_to_type(row)
        raise NotFoundError(f'Object type "{token}" not found')

    def get(self, token: str) -> ObjectType:
        return self.resolve(token)

    def list(self, include_archived: bool = False, custom_only: bool = False) -> List[ObjectType]:
        clauses = []
        if not include_archived:
            clauses.append("archived = 0")
        if custom_only:
            clauses.append("is_custom = 1")
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.db.query_all(
            f"SELECT * FROM object_types{where} "
            "ORDER BY is_custom, CAST(SUBSTR(id, 3) AS INTEGER)"
        )
        return [_row_to_type(row) for row in rows]

    @staticmethod
    def _check_labels(singular: Optional[str], plural: Optional[str]) -> None:
        for field, value in (("labelSingular", singular), ("labelPlural", plural)):
            if value is not None and not value.strip():
                raise ValidationError(f"{field} must not be empty")

    @staticmethod
    def _next_custom_id(conn: sqlite3.Connection) -> str:
        row = conn.execute(
            "SELECT COALESCE(MAX(CAST(SUBSTR(id, 3) AS INTEGER)), 0) AS n FROM object_types WHERE id LIKE '2-%'"
        ).fetchone()
        return f"{CUSTOM_PREFIX}{int(row['n']) + 1}"

    def register(self, definition: Any) -> ObjectType:
        """
        Register a custom object type.

        Parameters
        ----------
        definition : ObjectTypeCreate or dict
            Name, labels, optional primary display property, declared
            properties and the types it associates with.

        Returns
        -------
        ObjectType
            The new type, resolvable by name and by its "2-N" id.

        Raises
        ------
        ValidationError
            Malformed name, empty labels, or an undeclared primary display property.
        ConflictError
            A live type already uses the name.
        NotFoundError
            An associated object type does not resolve.
        """
        definition = coerce(ObjectTypeCreate, definition, "Invalid object type definition")
        if not NAME_PATTERN.match(definition.name):
            raise ValidationError(
                f'Object type name "{definition.name}" must start with a letter and contain only '
                "letters, digits and underscores"
            )
        self._check_labels(definition.label_singular, definition.label_plural)
        declared = {p.name for p in definition.properties} | {p.name for p in COMMON_PROPERTIES}
        primary = definition.primary_display_property
        if primary and primary not in declared:
            raise ValidationError(f'Primary display property "{primary}" is not among the declared properties')
        associated = [self.resolve(token).id for token in definition.associated_objects]

        with self.db.transaction() as conn:
            clash = conn.execute(
                "SELECT id FROM object_types WHERE name = ? AND archived = 0", (definition.name,)
            ).fetchone()
            if clash is not None:
                raise ConflictError(f'Object type "{definition.name}" already exists')

            type_id = self._next_custom_id(conn)
            ts = self.now()
            try:
                conn.execute(
                    """
                    INSERT INTO object_types (
                        id, name, label_singular, label_plural, primary_display_property,
                        is_custom, fully_qualified_name, description, archived, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, 1, ?, ?, 0, ?, ?)
                    """,
                    (
                        type_id,
                        definition.name,
                        definition.label_singular,
                        definition.label_plural,
                        primary,
                        f"{FULLY_QUALIFIED_PREFIX}{definition.name}",
                        definition.description,
                        ts,
                        ts,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise ConflictError(f'Object type "{definition.name}" already exists') from exc

            group = f"{definition.name.lower()}_information"
            conn.execute(
                "INSERT INTO property_groups (object_type_id, name, label, display_order) VALUES (?, ?, ?, 0)",
                (type_id, group, f"{definition.label_singular} Information"),
            )
            for seed_prop in COMMON_PROPERTIES:
                insert_property(
                    conn,
                    type_id,
                    PropertyCreate(
                        name=seed_prop.name,
                        label=seed_prop.label,
                        type=PropertyType(seed_prop.type),
                        field_type=seed_prop.field_type,
                    ),
                    ts,
                    group,
                    hubspot_defined=True,
                )
            for prop in definition.properties:
                if prop.name in {p.name for p in COMMON_PROPERTIES}:
                    continue
                insert_property(conn, type_id, prop, ts, prop.group_name or group)
            for other in associated:
                ensure_default_association_type(conn, type_id, other)
                ensure_default_association_type(conn, other, type_id)

        log.info(
            "Object type registered",
            extra={"object_type": type_id, "type_name": definition.name, "properties": len(definition.properties)},
        )
        return self.resolve(type_id)

    def _resolve_custom(self, token: str) -> ObjectType:
        current = self.resolve(token, include_archived=True)
        if not current.is_custom:
            raise ValidationError(f'Built-in object type "{current.name}" cannot be modified')
        return current

    def update(self, token: str, patch: Any) -> ObjectType:
        patch = coerce(ObjectTypeUpdate, patch, "Invalid object type update")
        current = self._resolve_custom(token)
        if current.archived:
            raise NotFoundError(f'Object type "{token}" not found')
        self._check_labels(patch.label_singular, patch.label_plural)
        changes = patch.model_dump(exclude_unset=True, exclude_none=True)
        with self.db.transaction() as conn:
            primary = changes.get("primary_display_property")
            if primary:
                known = conn.execute(
                    "SELECT 1 FROM property_definitions WHERE object_type_id = ? AND name = ? AND archived = 0",
                    (current.id, primary),
                ).fetchone()
                if known is None:
                    raise ValidationError(f'Primary display property "{primary}" is not declared')
            assignments = [f"{column} = ?" for column in changes]
            params = list(changes.values())
            assignments.append("updated_at = ?")
            params.extend([self.now(), current.id])
            conn.execute(f"UPDATE object_types SET {', '.join(assignments)} WHERE id = ?", params)
        return self.resolve(current.id)

    def archive(self, token: str) -> None:
        """
        Archive a custom type. Archiving an archived type is a no-op.

        Raises
        ------
        ValidationError
            If the token names a built-in type.
        """
        current = self._resolve_custom(token)
        if current.archived:
            return
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE object_types SET archived = 1, updated_at = ? WHERE id = ?",
                (self.now(), current.id),
            )
        log.info("Object type archived", extra={"object_type": current.id})


__all__ = ["TypeRegistry", "ensure_default_association_type", "NAME_PATTERN"]
