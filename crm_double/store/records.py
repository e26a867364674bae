"""
Record Store: CRUD, batch CRUD, archive and merge over schemaless records.

Records live in `objects`; their attributes are rows of `property_values`
(one text value per property name) and every write appends to
`property_value_history`. Reads project the requested properties plus the
three default system properties; create, update and merge return every
property the record holds.

Batch operations check their size cap before touching storage, then run
each item in its own savepoint so one bad item never aborts the rest.
"""

from __future__ import annotations

import re
import sqlite3
from typing import Any, Collection, Dict, List, Optional, Sequence, Tuple

from crm_double.domain.models import (
    BatchResult,
    Paging,
    PagingNext,
    PropertyHistoryEntry,
    Record,
    RecordInput,
    RecordPage,
    RecordUpdateInput,
    RecordUpsertInput,
)
from crm_double.errors import NotFoundError, ValidationError
from crm_double.infrastructure.db_factory import Database
from crm_double.store.abstract import (
    MAX_RECORD_BATCH,
    AbstractStore,
    check_batch_size,
    coerce,
    coerce_all,
)
from crm_double.store.properties import PropertyCatalog
from crm_double.store.types import TypeRegistry
from crm_double.utils.clock import Clock
from crm_double.utils.logging import get_logger

log = get_logger(__name__)

OBJECT_ID = "hs_object_id"
MERGED_IDS = "hs_merged_object_ids"
DEFAULT_PROPERTIES: Tuple[str, ...] = (OBJECT_ID, "hs_createdate", "hs_lastmodifieddate")
# Callers may send these, but the engine's values always win.
PROTECTED_PROPERTIES = frozenset({OBJECT_ID, "hs_createdate", MERGED_IDS})
# Never copied from the absorbed record during a merge.
SYSTEM_PROPERTIES = PROTECTED_PROPERTIES | {
    "hs_lastmodifieddate",
    "createdate",
    "lastmodifieddate",
    "hs_object_source",
    "hs_object_source_id",
    "hs_object_source_label",
}
OBJECT_SOURCE = "API"

DEFAULT_LIST_LIMIT = 10
MAX_LIST_LIMIT = 100

_ID_PATTERN = re.compile(r"^[0-9]+$")


def parse_record_id(record_id: Any) -> Optional[int]:
    """Integer form of a record id, or None when it cannot name a record."""
    text = str(record_id)
    if not _ID_PATTERN.match(text):
        return None
    return int(text)


def _row_to_record(
    row: sqlite3.Row,
    properties: Dict[str, Optional[str]],
    history: Optional[Dict[str, List[PropertyHistoryEntry]]] = None,
) -> Record:
    merged_into = row["merged_into_id"]
    return Record(
        id=str(row["id"]),
        properties=properties,
        properties_with_history=history,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        archived=bool(row["archived"]),
        archived_at=row["archived_at"],
        merged_into_id=str(merged_into) if merged_into is not None else None,
    )


class RecordStore(AbstractStore):
    """
    SQLite-backed Record Store.

    Parameters
    ----------
    db : Database
        Shared database handle.
    registry : TypeRegistry
        Resolves type tokens.
    catalog : PropertyCatalog
        Validates property values and answers uniqueness questions.
    clock : Clock, optional
        Timestamp source.
    """

    name = "records"

    def __init__(
        self,
        db: Database,
        registry: TypeRegistry,
        catalog: PropertyCatalog,
        clock: Optional[Clock] = None,
    ) -> None:
        super().__init__(db, clock)
        self.registry = registry
        self.catalog = catalog

    # -- row helpers -------------------------------------------------------

    def fetch_row(
        self,
        conn: sqlite3.Connection,
        type_id: str,
        record_id: Any,
        include_archived: bool = False,
    ) -> sqlite3.Row:
        """
        The `objects` row for a record of the given type.

        Raises
        ------
        NotFoundError
            Malformed id, unknown id, wrong type, or archived (unless included).
        """
        rid = parse_record_id(record_id)
        row = None
        if rid is not None:
            row = conn.execute(
                "SELECT * FROM objects WHERE id = ? AND object_type_id = ?", (rid, type_id)
            ).fetchone()
        if row is None or (row["archived"] and not include_archived):
            raise NotFoundError(f"Object {record_id} of type {type_id} not found")
        return row

    def require_live(self, conn: sqlite3.Connection, type_id: str, record_id: Any) -> int:
        return int(self.fetch_row(conn, type_id, record_id)["id"])

    @staticmethod
    def _load_properties(
        conn: sqlite3.Connection, rid: int, names: Optional[Collection[str]] = None
    ) -> Dict[str, Optional[str]]:
        sql = "SELECT property_name, value FROM property_values WHERE object_id = ?"
        params: List[Any] = [rid]
        if names is not None:
            wanted = sorted(set(names))
            sql += f" AND property_name IN ({','.join('?' for _ in wanted)})"
            params.extend(wanted)
        sql += " ORDER BY property_name"
        return {row["property_name"]: row["value"] for row in conn.execute(sql, params)}

    @staticmethod
    def _load_history(
        conn: sqlite3.Connection, rid: int, names: Collection[str]
    ) -> Dict[str, List[PropertyHistoryEntry]]:
        history: Dict[str, List[PropertyHistoryEntry]] = {name: [] for name in names}
        if not history:
            return history
        wanted = sorted(history)
        rows = conn.execute(
            f"""
            SELECT property_name, value, timestamp, source, source_id
            FROM property_value_history
            WHERE object_id = ? AND property_name IN ({','.join('?' for _ in wanted)})
            ORDER BY timestamp DESC, id DESC
            """,
            [rid, *wanted],
        )
        for row in rows:
            history[row["property_name"]].append(
                PropertyHistoryEntry(
                    value=row["value"],
                    timestamp=row["timestamp"],
                    source_type=row["source"],
                    source_id=row["source_id"],
                )
            )
        return history

    @staticmethod
    def projection(properties: Optional[Sequence[str]]) -> List[str]:
        """Requested properties plus the defaults; only the defaults when nothing is requested."""
        if isinstance(properties, str):
            properties = properties.split(",")
        names = list(DEFAULT_PROPERTIES)
        for name in properties or ():
            name = name.strip()
            if name and name not in names:
                names.append(name)
        return names

    def _write_properties(self, conn: sqlite3.Connection, rid: int, properties: Dict[str, str], ts: str) -> None:
        for name in sorted(properties):
            value = properties[name]
            conn.execute(
                """
                INSERT INTO property_values (object_id, property_name, value, updated_at, source)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (object_id, property_name) DO UPDATE SET
                    value = excluded.value, updated_at = excluded.updated_at, source = excluded.source
                """,
                (rid, name, value, ts, OBJECT_SOURCE),
            )
            conn.execute(
                """
                INSERT INTO property_value_history (object_id, property_name, value, timestamp, source)
                VALUES (?, ?, ?, ?, ?)
                """,
                (rid, name, value, ts, OBJECT_SOURCE),
            )

    def _full_record(self, conn: sqlite3.Connection, type_id: str, rid: int) -> Record:
        row = self.fetch_row(conn, type_id, rid, include_archived=True)
        return _row_to_record(row, self._load_properties(conn, rid))

    def materialize(
        self, conn: sqlite3.Connection, row: sqlite3.Row, names: Optional[Collection[str]] = None
    ) -> Record:
        """Build a Record from an `objects` row; `names=None` loads every property."""
        return _row_to_record(row, self._load_properties(conn, int(row["id"]), names))

    def _lookup_by_property(
        self,
        conn: sqlite3.Connection,
        type_id: str,
        id_property: str,
        value: str,
        include_archived: bool = False,
    ) -> Optional[int]:
        # A live record wins over an archived one holding the same value.
        row = conn.execute(
            """
            SELECT o.id FROM objects o
            JOIN property_values pv ON pv.object_id = o.id
            WHERE o.object_type_id = ? AND (o.archived = 0 OR ?)
              AND pv.property_name = ? AND pv.value = ?
            ORDER BY o.archived, o.id LIMIT 1
            """,
            (type_id, int(include_archived), id_property, value),
        ).fetchone()
        return int(row["id"]) if row else None

    def _check_id_property(self, conn: sqlite3.Connection, type_id: str, id_property: Optional[str]) -> Optional[str]:
        if not id_property or id_property == OBJECT_ID:
            return None
        if not self.catalog.is_unique(conn, type_id, id_property):
            raise ValidationError(f'Property "{id_property}" is not a unique identifier for object type {type_id}')
        return id_property

    def _resolve_id(
        self,
        conn: sqlite3.Connection,
        type_id: str,
        record_id: Any,
        id_property: Optional[str],
        include_archived: bool = False,
    ) -> sqlite3.Row:
        lookup = self._check_id_property(conn, type_id, id_property)
        if lookup is None:
            return self.fetch_row(conn, type_id, record_id, include_archived)
        rid = self._lookup_by_property(conn, type_id, lookup, str(record_id), include_archived)
        if rid is None:
            raise NotFoundError(f'No {type_id} object has {lookup} "{record_id}"')
        return self.fetch_row(conn, type_id, rid, include_archived)

    @staticmethod
    def _clean(properties: Any) -> Dict[str, str]:
        values = coerce(RecordInput, {"properties": properties or {}}, "Invalid properties").properties
        return {name: value for name, value in values.items() if name not in PROTECTED_PROPERTIES}

    # -- single-record operations -----------------------------------------

    def _create(self, conn: sqlite3.Connection, type_id: str, properties: Dict[str, str]) -> Record:
        self.catalog.check_values(conn, type_id, properties)
        ts = self.now()
        cursor = conn.execute(
            "INSERT INTO objects (object_type_id, created_at, updated_at) VALUES (?, ?, ?)",
            (type_id, ts, ts),
        )
        rid = int(cursor.lastrowid)
        values = {"createdate": ts, "hs_object_source": OBJECT_SOURCE}
        values.update(properties)
        # System dates always match the objects row.
        values[OBJECT_ID] = str(rid)
        values["hs_createdate"] = ts
        values["hs_lastmodifieddate"] = ts
        values["lastmodifieddate"] = ts
        self._write_properties(conn, rid, values, ts)
        log.info("Record created", extra={"object_type": type_id, "record_id": str(rid)})
        return self._full_record(conn, type_id, rid)

    def create(self, object_type: str, properties: Dict[str, Any]) -> Record:
        """
        Create a record and return it with every stored property.

        Raises
        ------
        NotFoundError
            If the type does not resolve.
        ValidationError
            If a value does not fit its declared property type.
        """
        values = self._clean(properties)
        type_id = self.registry.resolve(object_type).id
        with self.db.transaction() as conn:
            return self._create(conn, type_id, values)

    def _read(
        self,
        conn: sqlite3.Connection,
        type_id: str,
        record_id: Any,
        properties: Optional[Sequence[str]],
        id_property: Optional[str],
        archived: bool,
        properties_with_history: Optional[Sequence[str]],
    ) -> Record:
        row = self._resolve_id(conn, type_id, record_id, id_property, include_archived=archived)
        rid = int(row["id"])
        history = None
        if properties_with_history:
            history = self._load_history(conn, rid, list(dict.fromkeys(properties_with_history)))
        return _row_to_record(row, self._load_properties(conn, rid, self.projection(properties)), history)

    def get(
        self,
        object_type: str,
        record_id: Any,
        properties: Optional[Sequence[str]] = None,
        id_property: Optional[str] = None,
        archived: bool = False,
        properties_with_history: Optional[Sequence[str]] = None,
    ) -> Record:
        """
        Read one record.

        Parameters
        ----------
        object_type : str
            Type name or id.
        record_id : str
            Record id, or the value of `id_property`.
        properties : sequence of str, optional
            Projection; the three default properties are always included.
        id_property : str, optional
            A unique-value property to look the record up by.
        archived : bool
            Whether archived records are visible. With `id_property`, a live
            record holding the value wins over an archived one.
        properties_with_history : sequence of str, optional
            Properties whose value history is returned, newest first.
        """
        type_id = self.registry.resolve(object_type).id
        with self.db.connection() as conn:
            return self._read(conn, type_id, record_id, properties, id_property, archived, properties_with_history)

    def list(
        self,
        object_type: str,
        properties: Optional[Sequence[str]] = None,
        limit: Optional[int] = DEFAULT_LIST_LIMIT,
        after: Optional[str] = None,
        archived: bool = False,
    ) -> RecordPage:
        """
        Page through records of one type in ascending id order.

        `after` is the last id of the previous page; rows with id at or below
        it are never returned, so inserts made after a cursor was issued
        cannot be replayed into visited pages. `archived=True` lists archived
        records instead of live ones.
        """
        if limit is None or limit <= 0:
            limit = DEFAULT_LIST_LIMIT
        limit = min(limit, MAX_LIST_LIMIT)
        after_id = 0
        if after not in (None, ""):
            parsed = parse_record_id(after)
            if parsed is None:
                raise ValidationError(f'Invalid paging cursor "{after}"')
            after_id = parsed
        type_id = self.registry.resolve(object_type).id
        names = self.projection(properties)
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM objects
                WHERE object_type_id = ? AND archived = ? AND id > ?
                ORDER BY id ASC LIMIT ?
                """,
                (type_id, int(archived), after_id, limit + 1),
            ).fetchall()
            page_rows = rows[:limit]
            results = [
                _row_to_record(row, self._load_properties(conn, int(row["id"]), names)) for row in page_rows
            ]
        paging = None
        if len(rows) > limit:
            paging = Paging(next=PagingNext(after=str(page_rows[-1]["id"])))
        return RecordPage(results=results, paging=paging)

    def _update(
        self,
        conn: sqlite3.Connection,
        type_id: str,
        record_id: Any,
        properties: Dict[str, str],
        id_property: Optional[str] = None,
    ) -> Record:
        row = self._resolve_id(conn, type_id, record_id, id_property)
        rid = int(row["id"])
        self.catalog.check_values(conn, type_id, properties)
        ts = self.now()
        values = dict(properties)
        values["hs_lastmodifieddate"] = ts
        values["lastmodifieddate"] = ts
        self._write_properties(conn, rid, values, ts)
        conn.execute("UPDATE objects SET updated_at = ? WHERE id = ?", (ts, rid))
        log.info(
            "Record updated",
            extra={"object_type": type_id, "record_id": str(rid), "properties": len(properties)},
        )
        return self._full_record(conn, type_id, rid)

    def update(
        self,
        object_type: str,
        record_id: Any,
        properties: Dict[str, Any],
        id_property: Optional[str] = None,
    ) -> Record:
        """
        Upsert the given property values on a live record.

        Raises
        ------
        NotFoundError
            If the record is absent, archived, or of another type.
        """
        values = self._clean(properties)
        type_id = self.registry.resolve(object_type).id
        with self.db.transaction() as conn:
            return self._update(conn, type_id, record_id, values, id_property)

    def _archive(self, conn: sqlite3.Connection, type_id: str, record_id: Any) -> None:
        row = self.fetch_row(conn, type_id, record_id, include_archived=True)
        if row["archived"]:
            return
        ts = self.now()
        conn.execute(
            "UPDATE objects SET archived = 1, archived_at = ?, updated_at = ? WHERE id = ?",
            (ts, ts, row["id"]),
        )
        log.info("Record archived", extra={"object_type": type_id, "record_id": str(row["id"])})

    def archive(self, object_type: str, record_id: Any) -> None:
        """
        Soft-delete a record. Archiving an archived record is a no-op success.

        Edges touching the record stay in the `associations` table; reads
        skip archived endpoints, so the API never returns them.
        """
        type_id = self.registry.resolve(object_type).id
        with self.db.transaction() as conn:
            self._archive(conn, type_id, record_id)

    def history(
        self, object_type: str, record_id: Any, property_names: Sequence[str]
    ) -> Dict[str, List[PropertyHistoryEntry]]:
        type_id = self.registry.resolve(object_type).id
        with self.db.connection() as conn:
            rid = int(self.fetch_row(conn, type_id, record_id, include_archived=True)["id"])
            return self._load_history(conn, rid, list(dict.fromkeys(property_names)))

    def merge(self, object_type: str, primary_id: Any, merge_id: Any) -> Record:
        """
        Merge `merge_id` into `primary_id`.

        The primary gains every non-system property it lacks (absent or
        empty), `hs_merged_object_ids` becomes the union of both records'
        merged ids plus the absorbed id, and the absorbed record is archived
        with `merged_into_id` pointing at the primary. Associations are left
        where they are.

        Raises
        ------
        ValidationError
            If both ids name the same record.
        NotFoundError
            If either id is not a live record of the type.
        """
        type_id = self.registry.resolve(object_type).id
        with self.db.transaction() as conn:
            primary = self.require_live(conn, type_id, primary_id)
            absorbed = self.require_live(conn, type_id, merge_id)
            if primary == absorbed:
                raise ValidationError(f"Cannot merge object {primary} into itself")

            primary_props = self._load_properties(conn, primary)
            absorbed_props = self._load_properties(conn, absorbed)
            values: Dict[str, str] = {}
            for name, value in absorbed_props.items():
                if name in SYSTEM_PROPERTIES or not value:
                    continue
                if not primary_props.get(name):
                    values[name] = value

            merged_ids: List[str] = []
            for source in (primary_props.get(MERGED_IDS), absorbed_props.get(MERGED_IDS), str(absorbed)):
                for item in (source or "").split(";"):
                    if item and item not in merged_ids:
                        merged_ids.append(item)
            ts = self.now()
            values[MERGED_IDS] = ";".join(merged_ids)
            values["hs_lastmodifieddate"] = ts
            values["lastmodifieddate"] = ts

            self._write_properties(conn, primary, values, ts)
            conn.execute("UPDATE objects SET updated_at = ? WHERE id = ?", (ts, primary))
            conn.execute(
                """
                UPDATE objects SET archived = 1, archived_at = ?, updated_at = ?, merged_into_id = ?
                WHERE id = ?
                """,
                (ts, ts, primary, absorbed),
            )
            log.info(
                "Records merged",
                extra={"object_type": type_id, "primary_id": str(primary), "merged_id": str(absorbed)},
            )
            return self._full_record(conn, type_id, primary)

    # -- batches -----------------------------------------------------------

    def batch_create(self, object_type: str, inputs: Sequence[Any]) -> BatchResult[Record]:
        check_batch_size(inputs, MAX_RECORD_BATCH)
        items = [
            {name: value for name, value in item.properties.items() if name not in PROTECTED_PROPERTIES}
            for item in coerce_all(RecordInput, inputs, "Invalid batch input")
        ]
        type_id = self.registry.resolve(object_type).id
        with self.db.connection() as conn:
            return self.run_batch(items, lambda values: self._create(conn, type_id, values), lambda values: {})

    def batch_read(
        self,
        object_type: str,
        ids: Sequence[Any],
        properties: Optional[Sequence[str]] = None,
        id_property: Optional[str] = None,
        archived: bool = False,
        properties_with_history: Optional[Sequence[str]] = None,
    ) -> BatchResult[Record]:
        check_batch_size(ids, MAX_RECORD_BATCH)
        keys = [str(item["id"]) if isinstance(item, dict) else str(item) for item in ids]
        type_id = self.registry.resolve(object_type).id
        with self.db.connection() as conn:
            self._check_id_property(conn, type_id, id_property)
            return self.run_batch(
                keys,
                lambda key: self._read(
                    conn, type_id, key, properties, id_property, archived, properties_with_history
                ),
                lambda key: {"ids": [key]},
            )

    def batch_update(
        self, object_type: str, inputs: Sequence[Any], id_property: Optional[str] = None
    ) -> BatchResult[Record]:
        check_batch_size(inputs, MAX_RECORD_BATCH)
        items = coerce_all(RecordUpdateInput, inputs, "Invalid batch input")
        type_id = self.registry.resolve(object_type).id
        with self.db.connection() as conn:
            return self.run_batch(
                items,
                lambda item: self._update(
                    conn,
                    type_id,
                    item.id,
                    {k: v for k, v in item.properties.items() if k not in PROTECTED_PROPERTIES},
                    item.id_property or id_property,
                ),
                lambda item: {"ids": [item.id]},
            )

    def default_id_property(self, conn: sqlite3.Connection, type_id: str) -> str:
        """The primary display property when it is declared unique, else hs_object_id."""
        row = conn.execute(
            "SELECT primary_display_property FROM object_types WHERE id = ?", (type_id,)
        ).fetchone()
        primary = row["primary_display_property"] if row else None
        if primary and self.catalog.is_unique(conn, type_id, primary):
            return primary
        return OBJECT_ID

    def _upsert(self, conn: sqlite3.Connection, type_id: str, item: RecordUpsertInput, id_property: str) -> Record:
        values = {k: v for k, v in item.properties.items() if k not in PROTECTED_PROPERTIES}
        lookup = item.id or item.properties.get(id_property)
        if not lookup:
            raise ValidationError(f'Upsert input needs an id or a "{id_property}" property value')
        if id_property == OBJECT_ID:
            rid = parse_record_id(lookup)
            existing = None
            if rid is not None:
                row = conn.execute(
                    "SELECT id FROM objects WHERE id = ? AND object_type_id = ? AND archived = 0",
                    (rid, type_id),
                ).fetchone()
                existing = int(row["id"]) if row else None
        else:
            existing = self._lookup_by_property(conn, type_id, id_property, lookup)
            values.setdefault(id_property, lookup)
        if existing is not None:
            record = self._update(conn, type_id, existing, values)
            record.new = False
        else:
            record = self._create(conn, type_id, values)
            record.new = True
        return record

    def batch_upsert(
        self, object_type: str, inputs: Sequence[Any], id_property: Optional[str] = None
    ) -> BatchResult[Record]:
        """
        Create or update each input, matched on `id_property`.

        Without an explicit `id_property` (per batch or per item) the type's
        primary display property is used when it is unique, otherwise the
        record id.
        """
        check_batch_size(inputs, MAX_RECORD_BATCH)
        items = coerce_all(RecordUpsertInput, inputs, "Invalid batch input")
        type_id = self.registry.resolve(object_type).id
        with self.db.connection() as conn:
            default = self.default_id_property(conn, type_id)
            for item in items:
                self._check_id_property(conn, type_id, item.id_property or id_property)
            return self.run_batch(
                items,
                lambda item: self._upsert(conn, type_id, item, item.id_property or id_property or default),
                lambda item: {"ids": [item.id or item.properties.get(item.id_property or id_property or default, "")]},
            )

    def batch_archive(self, object_type: str, ids: Sequence[Any]) -> BatchResult[Any]:
        check_batch_size(ids, MAX_RECORD_BATCH)
        keys = [str(item["id"]) if isinstance(item, dict) else str(item) for item in ids]
        type_id = self.registry.resolve(object_type).id
        with self.db.connection() as conn:
            return self.run_batch(
                keys,
                lambda key: self._archive(conn, type_id, key),
                lambda key: {"ids": [key]},
            )


__all__ = [
    "DEFAULT_PROPERTIES",
    "MAX_LIST_LIMIT",
    "PROTECTED_PROPERTIES",
    "RecordStore",
    "parse_record_id",
]
