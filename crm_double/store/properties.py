"""
Property Catalog: per-type property definitions, property groups and the
value validation contract consumed by the Record Store.

Definitions are keyed by (object_type_id, name). Archiving is a soft delete;
declaring a name whose only definition is archived revives that row with
the new definition. Values are stored as text, so type semantics live only
in `check_values`.
"""

from __future__ import annotations

import json
import sqlite3
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence, Set

from crm_double.domain.models import (
    BatchResult,
    PropertyCreate,
    PropertyDefinition,
    PropertyGroup,
    PropertyOption,
    PropertyType,
    PropertyUpdate,
)
from crm_double.errors import ConflictError, ErrorDetail, NotFoundError, ValidationError
from crm_double.store.abstract import (
    MAX_PROPERTY_BATCH,
    AbstractStore,
    check_batch_size,
    coerce,
    coerce_all,
)
from crm_double.utils.clock import Clock
from crm_double.utils.logging import get_logger

if TYPE_CHECKING:
    from crm_double.infrastructure.db_factory import Database
    from crm_double.store.types import TypeRegistry

log = get_logger(__name__)

_BOOL_VALUES = frozenset({"true", "false"})

# Column names PropertyUpdate fields map onto.
_UPDATABLE_COLUMNS = (
    "label",
    "type",
    "field_type",
    "group_name",
    "description",
    "display_order",
    "hidden",
    "form_field",
    "options",
)


def encode_options(options: Iterable[PropertyOption]) -> str:
    return json.dumps([option.model_dump(by_alias=True) for option in options])


def row_to_property(row: sqlite3.Row) -> PropertyDefinition:
    raw_options = row["options"] or "[]"
    return PropertyDefinition(
        object_type_id=row["object_type_id"],
        name=row["name"],
        label=row["label"],
        type=row["type"],
        field_type=row["field_type"],
        group_name=row["group_name"] or "",
        description=row["description"] or "",
        display_order=row["display_order"],
        has_unique_value=bool(row["has_unique_value"]),
        hidden=bool(row["hidden"]),
        form_field=bool(row["form_field"]),
        calculated=bool(row["calculated"]),
        external_options=bool(row["external_options"]),
        hubspot_defined=bool(row["hubspot_defined"]),
        options=[PropertyOption.model_validate(item) for item in json.loads(raw_options)],
        archived=bool(row["archived"]),
        archived_at=row["archived_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def insert_property(
    conn: sqlite3.Connection,
    type_id: str,
    definition: PropertyCreate,
    ts: str,
    group_name: str,
    hubspot_defined: bool = False,
) -> None:
    """
    Write a definition row, replacing (and reviving) an archived one.

    Callers check for a live definition with the same name first.
    """
    conn.execute(
        """
        INSERT INTO property_definitions (
            object_type_id, name, label, type, field_type, group_name, description,
            display_order, has_unique_value, hidden, form_field, hubspot_defined,
            options, archived, archived_at, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, NULL, ?, ?)
        ON CONFLICT (object_type_id, name) DO UPDATE SET
            label = excluded.label,
            type = excluded.type,
            field_type = excluded.field_type,
            group_name = excluded.group_name,
            description = excluded.description,
            display_order = excluded.display_order,
            has_unique_value = excluded.has_unique_value,
            hidden = excluded.hidden,
            form_field = excluded.form_field,
            hubspot_defined = excluded.hubspot_defined,
            options = excluded.options,
            archived = 0,
            archived_at = NULL,
            created_at = excluded.created_at,
            updated_at = excluded.updated_at
        """,
        (
            type_id,
            definition.name,
            definition.label,
            PropertyType(definition.type).value,
            definition.field_type,
            group_name,
            definition.description,
            definition.display_order,
            int(definition.has_unique_value),
            int(definition.hidden),
            int(definition.form_field),
            int(hubspot_defined),
            encode_options(definition.options),
            ts,
            ts,
        ),
    )


def parse_number(value: str) -> Optional[float]:
    """
    Parse an IEEE-754 number the way upstream does, or return None.

    Accepts signed decimals, exponents, "inf" and "nan" spellings; rejects
    surrounding whitespace and digit-group underscores.
    """
    if not value or value != value.strip() or "_" in value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def validate_value(definition: PropertyDefinition, value: str) -> Optional[ErrorDetail]:
    """
    Check one candidate value against its declared type.

    The empty string always passes since it clears the value. Returns an
    ErrorDetail describing the offence, or None.
    """
    if value == "":
        return None
    declared = definition.type
    context = {"propertyName": [definition.name]}
    if declared == PropertyType.NUMBER.value:
        if parse_number(value) is None:
            return ErrorDetail(
                message=f'Property "{definition.name}" expects a number, got "{value}"',
                code="INVALID_NUMBER",
                context=context,
            )
    elif declared == PropertyType.BOOL.value:
        if value.lower() not in _BOOL_VALUES:
            return ErrorDetail(
                message=f'Property "{definition.name}" expects true or false, got "{value}"',
                code="INVALID_BOOLEAN",
                context=context,
            )
    elif declared == PropertyType.ENUMERATION.value and definition.options:
        allowed = set(definition.option_values())
        unknown = [part for part in value.split(";") if part not in allowed]
        if unknown:
            return ErrorDetail(
                message=(
                    f'Property "{definition.name}" has no option "{unknown[0]}"; '
                    f"allowed values are {sorted(allowed)}"
                ),
                code="INVALID_OPTION",
                context=context,
            )
    return None


class PropertyCatalog(AbstractStore):
    """
    SQLite-backed Property Catalog.

    Parameters
    ----------
    db : Database
        Shared database handle.
    registry : TypeRegistry
        Resolves type tokens for every operation.
    clock : Clock, optional
        Timestamp source.
    """

    name = "properties"

    def __init__(self, db: "Database", registry: "TypeRegistry", clock: Optional[Clock] = None) -> None:
        super().__init__(db, clock)
        self.registry = registry

    # -- row helpers shared with the other stores --------------------------

    def definitions(
        self,
        conn: sqlite3.Connection,
        type_id: str,
        names: Optional[Iterable[str]] = None,
    ) -> Dict[str, PropertyDefinition]:
        """All definition rows (live and archived) for a type, optionally limited to `names`."""
        sql = "SELECT * FROM property_definitions WHERE object_type_id = ?"
        params: List[Any] = [type_id]
        if names is not None:
            wanted = sorted(set(names))
            if not wanted:
                return {}
            sql += f" AND name IN ({','.join('?' for _ in wanted)})"
            params.extend(wanted)
        return {row["name"]: row_to_property(row) for row in conn.execute(sql, params)}

    def number_properties(self, conn: sqlite3.Connection, type_id: str) -> Set[str]:
        rows = conn.execute(
            "SELECT name FROM property_definitions WHERE object_type_id = ? AND type = ? AND archived = 0",
            (type_id, PropertyType.NUMBER.value),
        )
        return {row["name"] for row in rows}

    def is_unique(self, conn: sqlite3.Connection, type_id: str, name: str) -> bool:
        row = conn.execute(
            """
            SELECT has_unique_value FROM property_definitions
            WHERE object_type_id = ? AND name = ? AND archived = 0
            """,
            (type_id, name),
        ).fetchone()
        return bool(row and row["has_unique_value"])

    def check_values(self, conn: sqlite3.Connection, type_id: str, properties: Dict[str, str]) -> None:
        """
        Validate candidate values for a resolved type.

        Unknown names pass; a name whose definition is archived fails, as
        does any value that does not fit its declared type.
        """
        if not properties:
            return
        known = self.definitions(conn, type_id, properties.keys())
        offences: List[ErrorDetail] = []
        for name in sorted(properties):
            definition = known.get(name)
            if definition is None:
                continue
            if definition.archived:
                offences.append(
                    ErrorDetail(
                        message=f'Property "{name}" is archived and cannot be written',
                        code="PROPERTY_ARCHIVED",
                        context={"propertyName": [name]},
                    )
                )
                continue
            offence = validate_value(definition, properties[name])
            if offence is not None:
                offences.append(offence)
        if offences:
            summary = "; ".join(detail.message for detail in offences)
            raise ValidationError(f"Property values were not valid: {summary}", offences)

    def validate(self, object_type: str, properties: Dict[str, str]) -> None:
        type_id = self.registry.resolve(object_type).id
        with self.db.connection() as conn:
            self.check_values(conn, type_id, properties)

    def default_group(self, conn: sqlite3.Connection, type_id: str) -> str:
        row = conn.execute(
            """
            SELECT name FROM property_groups WHERE object_type_id = ? AND archived = 0
            ORDER BY display_order, name LIMIT 1
            """,
            (type_id,),
        ).fetchone()
        return row["name"] if row else ""

    # -- definitions -------------------------------------------------------

    def _declare(self, conn: sqlite3.Connection, type_id: str, definition: PropertyCreate) -> PropertyDefinition:
        existing = conn.execute(
            "SELECT archived FROM property_definitions WHERE object_type_id = ? AND name = ?",
            (type_id, definition.name),
        ).fetchone()
        if existing is not None and not existing["archived"]:
            raise ConflictError(f'Property "{definition.name}" already exists for object type {type_id}')
        group = definition.group_name or self.default_group(conn, type_id)
        insert_property(conn, type_id, definition, self.now(), group)
        log.info(
            "Property declared",
            extra={"object_type": type_id, "property": definition.name, "revived": existing is not None},
        )
        return self._fetch(conn, type_id, definition.name)

    def _fetch(
        self, conn: sqlite3.Connection, type_id: str, name: str, include_archived: bool = False
    ) -> PropertyDefinition:
        row = conn.execute(
            "SELECT * FROM property_definitions WHERE object_type_id = ? AND name = ?",
            (type_id, name),
        ).fetchone()
        if row is None or (row["archived"] and not include_archived):
            raise NotFoundError(f'Property "{name}" does not exist for object type {type_id}')
        return row_to_property(row)

    def declare(self, object_type: str, definition: Any) -> PropertyDefinition:
        """
        Declare a property for a type.

        Raises
        ------
        ConflictError
            If a live definition with the same name exists.
        ValidationError
            If the definition is malformed or names an unsupported type.
        """
        definition = coerce(PropertyCreate, definition, "Invalid property definition")
        type_id = self.registry.resolve(object_type).id
        with self.db.transaction() as conn:
            return self._declare(conn, type_id, definition)

    def get(self, object_type: str, name: str, include_archived: bool = False) -> PropertyDefinition:
        type_id = self.registry.resolve(object_type).id
        with self.db.connection() as conn:
            return self._fetch(conn, type_id, name, include_archived)

    def list(self, object_type: str, include_archived: bool = False) -> List[PropertyDefinition]:
        type_id = self.registry.resolve(object_type).id
        sql = "SELECT * FROM property_definitions WHERE object_type_id = ?"
        if not include_archived:
            sql += " AND archived = 0"
        sql += " ORDER BY display_order, name"
        return [row_to_property(row) for row in self.db.query_all(sql, (type_id,))]

    def update(self, object_type: str, name: str, patch: Any) -> PropertyDefinition:
        patch = coerce(PropertyUpdate, patch, "Invalid property update")
        type_id = self.registry.resolve(object_type).id
        changes = patch.model_dump(exclude_unset=True)
        with self.db.transaction() as conn:
            current = self._fetch(conn, type_id, name)
            new_type = changes.get("type")
            if new_type is not None and PropertyType(new_type).value != current.type and current.hubspot_defined:
                raise ValidationError(f'The type of built-in property "{name}" cannot be changed')
            assignments: List[str] = []
            params: List[Any] = []
            for column in _UPDATABLE_COLUMNS:
                if column not in changes or changes[column] is None:
                    continue
                value = changes[column]
                if column == "options":
                    value = encode_options(patch.options or [])
                elif column == "type":
                    value = PropertyType(value).value
                elif isinstance(value, bool):
                    value = int(value)
                assignments.append(f"{column} = ?")
                params.append(value)
            assignments.append("updated_at = ?")
            params.extend([self.now(), type_id, name])
            conn.execute(
                f"UPDATE property_definitions SET {', '.join(assignments)} WHERE object_type_id = ? AND name = ?",
                params,
            )
            return self._fetch(conn, type_id, name)

    def _archive(self, conn: sqlite3.Connection, type_id: str, name: str) -> None:
        current = self._fetch(conn, type_id, name, include_archived=True)
        if current.archived:
            return
        ts = self.now()
        conn.execute(
            """
            UPDATE property_definitions SET archived = 1, archived_at = ?, updated_at = ?
            WHERE object_type_id = ? AND name = ?
            """,
            (ts, ts, type_id, name),
        )
        log.info("Property archived", extra={"object_type": type_id, "property": name})

    def archive(self, object_type: str, name: str) -> None:
        """Soft-delete a definition. Archiving an archived definition is a no-op."""
        type_id = self.registry.resolve(object_type).id
        with self.db.transaction() as conn:
            self._archive(conn, type_id, name)

    # -- batches -----------------------------------------------------------

    def batch_declare(self, object_type: str, inputs: Sequence[Any]) -> BatchResult[PropertyDefinition]:
        check_batch_size(inputs, MAX_PROPERTY_BATCH)
        definitions = coerce_all(PropertyCreate, inputs, "Invalid property definition")
        type_id = self.registry.resolve(object_type).id
        with self.db.connection() as conn:
            return self.run_batch(
                definitions,
                lambda definition: self._declare(conn, type_id, definition),
                lambda definition: {"name": [definition.name]},
            )

    def batch_read(
        self, object_type: str, names: Sequence[str], include_archived: bool = False
    ) -> BatchResult[PropertyDefinition]:
        check_batch_size(names, MAX_PROPERTY_BATCH)
        type_id = self.registry.resolve(object_type).id
        with self.db.connection() as conn:
            return self.run_batch(
                list(names),
                lambda name: self._fetch(conn, type_id, name, include_archived),
                lambda name: {"name": [name]},
            )

    def batch_archive(self, object_type: str, names: Sequence[str]) -> BatchResult[Any]:
        check_batch_size(names, MAX_PROPERTY_BATCH)
        type_id = self.registry.resolve(object_type).id
        with self.db.connection() as conn:
            return self.run_batch(
                list(names),
                lambda name: self._archive(conn, type_id, name),
                lambda name: {"name": [name]},
            )

    # -- groups ------------------------------------------------------------

    @staticmethod
    def _row_to_group(row: sqlite3.Row) -> PropertyGroup:
        return PropertyGroup(
            name=row["name"],
            label=row["label"],
            display_order=row["display_order"],
            archived=bool(row["archived"]),
        )

    def list_groups(self, object_type: str, include_archived: bool = False) -> List[PropertyGroup]:
        type_id = self.registry.resolve(object_type).id
        sql = "SELECT * FROM property_groups WHERE object_type_id = ?"
        if not include_archived:
            sql += " AND archived = 0"
        sql += " ORDER BY display_order, name"
        return [self._row_to_group(row) for row in self.db.query_all(sql, (type_id,))]

    def get_group(self, object_type: str, name: str) -> PropertyGroup:
        type_id = self.registry.resolve(object_type).id
        row = self.db.query_one(
            "SELECT * FROM property_groups WHERE object_type_id = ? AND name = ?", (type_id, name)
        )
        if row is None:
            raise NotFoundError(f'Property group "{name}" does not exist for object type {type_id}')
        return self._row_to_group(row)

    def create_group(self, object_type: str, group: Any) -> PropertyGroup:
        group = coerce(PropertyGroup, group, "Invalid property group")
        type_id = self.registry.resolve(object_type).id
        with self.db.transaction() as conn:
            existing = conn.execute(
                "SELECT archived FROM property_groups WHERE object_type_id = ? AND name = ?",
                (type_id, group.name),
            ).fetchone()
            if existing is not None and not existing["archived"]:
                raise ConflictError(f'Property group "{group.name}" already exists for object type {type_id}')
            conn.execute(
                """
                INSERT INTO property_groups (object_type_id, name, label, display_order, archived)
                VALUES (?, ?, ?, ?, 0)
                ON CONFLICT (object_type_id, name) DO UPDATE SET
                    label = excluded.label, display_order = excluded.display_order, archived = 0
                """,
                (type_id, group.name, group.label, group.display_order),
            )
        return PropertyGroup(name=group.name, label=group.label, display_order=group.display_order)

    def archive_group(self, object_type: str, name: str) -> None:
        type_id = self.registry.resolve(object_type).id
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT archived FROM property_groups WHERE object_type_id = ? AND name = ?",
                (type_id, name),
            ).fetchone()
            if row is None:
                raise NotFoundError(f'Property group "{name}" does not exist for object type {type_id}')
            if not row["archived"]:
                conn.execute(
                    "UPDATE property_groups SET archived = 1 WHERE object_type_id = ? AND name = ?",
                    (type_id, name),
                )


__all__ = [
    "PropertyCatalog",
    "encode_options",
    "insert_property",
    "parse_number",
    "row_to_property",
    "validate_value",
]
