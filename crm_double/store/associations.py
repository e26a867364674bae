"""
Association Graph: directed, labeled edges between records of any two types.

Edges are rows of `associations` keyed by (from, to, association_type_id).
Writing a labeled edge also writes the unlabeled default edge for the same
direction, so "are these connected at all" never needs label-aware joins.
Nothing here writes the reverse direction.

Edge-type definitions (the label catalog) live in `association_types`.
Deleting a label removes only its definition row; edges that used it keep
the orphaned type id and are read back without category or label.
"""

from __future__ import annotations

import sqlite3
from typing import Any, Dict, List, Optional, Sequence, Tuple

from crm_double.domain.models import (
    AssociationArchiveInput,
    AssociationBatchReadResult,
    AssociationCategory,
    AssociationInput,
    AssociationLabel,
    AssociationPage,
    AssociationResult,
    AssociationSpec,
    AssociationType,
    BatchResult,
    DefaultAssociationResult,
    LabelsBetweenObjectPair,
    ObjectRef,
    Paging,
    PagingNext,
)
from crm_double.errors import ConflictError, NotFoundError, ValidationError
from crm_double.infrastructure.db_factory import Database
from crm_double.store.abstract import (
    MAX_ASSOCIATION_ARCHIVE_BATCH,
    MAX_ASSOCIATION_CREATE_BATCH,
    MAX_ASSOCIATION_READ_BATCH,
    AbstractStore,
    check_batch_size,
    coerce,
    coerce_all,
)
from crm_double.store.records import RecordStore, parse_record_id
from crm_double.store.types import TypeRegistry, ensure_default_association_type
from crm_double.utils.clock import Clock
from crm_double.utils.logging import get_logger

log = get_logger(__name__)

DEFAULT_PAGE_LIMIT = 500
MAX_PAGE_LIMIT = 500


class AssociationGraph(AbstractStore):
    """
    SQLite-backed Association Graph.

    Parameters
    ----------
    db : Database
        Shared database handle.
    registry : TypeRegistry
        Resolves type tokens.
    records : RecordStore
        Confirms both endpoints are live records of the expected types.
    clock : Clock, optional
        Timestamp source.
    """

    name = "associations"

    def __init__(
        self,
        db: Database,
        registry: TypeRegistry,
        records: RecordStore,
        clock: Optional[Clock] = None,
    ) -> None:
        super().__init__(db, clock)
        self.registry = registry
        self.records = records

    def _pair(self, from_type: str, to_type: str) -> Tuple[str, str]:
        return self.registry.resolve(from_type).id, self.registry.resolve(to_type).id

    def _insert_edge(self, conn: sqlite3.Connection, from_id: int, to_id: int, type_id: int) -> None:
        conn.execute(
            """
            INSERT OR IGNORE INTO associations (from_object_id, to_object_id, association_type_id, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (from_id, to_id, type_id, self.now()),
        )

    @staticmethod
    def _type_row(conn: sqlite3.Connection, type_id: int) -> Optional[sqlite3.Row]:
        return conn.execute("SELECT * FROM association_types WHERE id = ?", (type_id,)).fetchone()

    # -- edges -------------------------------------------------------------

    def _associate_default(
        self, conn: sqlite3.Connection, from_type_id: str, from_id: Any, to_type_id: str, to_id: Any
    ) -> AssociationSpec:
        source = self.records.require_live(conn, from_type_id, from_id)
        target = self.records.require_live(conn, to_type_id, to_id)
        type_id = ensure_default_association_type(conn, from_type_id, to_type_id)
        self._insert_edge(conn, source, target, type_id)
        return AssociationSpec(association_category=AssociationCategory.HUBSPOT_DEFINED, association_type_id=type_id)

    def associate_default(self, from_type: str, from_id: Any, to_type: str, to_id: Any) -> AssociationSpec:
        """
        Write the unlabeled default edge from one record to another.

        Idempotent. Returns the association type the edge uses.

        Raises
        ------
        NotFoundError
            If either type does not resolve or either record is not live.
        """
        from_type_id, to_type_id = self._pair(from_type, to_type)
        with self.db.transaction() as conn:
            spec = self._associate_default(conn, from_type_id, from_id, to_type_id, to_id)
        log.info(
            "Default association written",
            extra={"from_id": str(from_id), "to_id": str(to_id), "type_id": spec.association_type_id},
        )
        return spec

    def _labels_between(self, conn: sqlite3.Connection, source: int, target: int) -> List[str]:
        rows = conn.execute(
            """
            SELECT at.label FROM associations a
            JOIN association_types at ON at.id = a.association_type_id
            WHERE a.from_object_id = ? AND a.to_object_id = ? AND at.label IS NOT NULL
            ORDER BY at.id
            """,
            (source, target),
        )
        return [row["label"] for row in rows]

    def _associate_with_labels(
        self,
        conn: sqlite3.Connection,
        from_type_id: str,
        from_id: Any,
        to_type_id: str,
        to_id: Any,
        specs: Sequence[AssociationSpec],
    ) -> LabelsBetweenObjectPair:
        if not specs:
            raise ValidationError("At least one association type is required")
        source = self.records.require_live(conn, from_type_id, from_id)
        target = self.records.require_live(conn, to_type_id, to_id)
        for spec in specs:
            row = self._type_row(conn, spec.association_type_id)
            if row is None:
                raise NotFoundError(f"Association type {spec.association_type_id} not found")
            if (row["from_object_type"], row["to_object_type"]) != (from_type_id, to_type_id):
                raise ValidationError(
                    f"Association type {spec.association_type_id} does not connect {from_type_id} to {to_type_id}"
                )
            if row["category"] != AssociationCategory(spec.association_category).value:
                raise ValidationError(
                    f"Association type {spec.association_type_id} belongs to category {row['category']}"
                )
            self._insert_edge(conn, source, target, spec.association_type_id)
        self._insert_edge(conn, source, target, ensure_default_association_type(conn, from_type_id, to_type_id))
        return LabelsBetweenObjectPair(
            from_object_type_id=from_type_id,
            from_object_id=str(source),
            to_object_type_id=to_type_id,
            to_object_id=str(target),
            labels=self._labels_between(conn, source, target),
        )

    def associate_with_labels(
        self,
        from_type: str,
        from_id: Any,
        to_type: str,
        to_id: Any,
        types: Sequence[Any],
    ) -> LabelsBetweenObjectPair:
        """
        Write one edge per requested association type plus the unlabeled edge.

        Raises
        ------
        NotFoundError
            Unknown type id, or an endpoint that is not a live record.
        ValidationError
            A type id that describes a different directed pair or category.
        """
        specs = coerce_all(AssociationSpec, types, "Invalid association type")
        from_type_id, to_type_id = self._pair(from_type, to_type)
        with self.db.transaction() as conn:
            result = self._associate_with_labels(conn, from_type_id, from_id, to_type_id, to_id, specs)
        log.info(
            "Labeled association written",
            extra={"from_id": str(from_id), "to_id": str(to_id), "types": len(specs)},
        )
        return result

    def _edges(
        self,
        conn: sqlite3.Connection,
        source: int,
        to_type_id: str,
        association_type_id: Optional[int] = None,
    ) -> List[AssociationResult]:
        sql = """
            SELECT a.to_object_id, a.association_type_id, at.category, at.label
            FROM associations a
            JOIN objects o ON o.id = a.to_object_id AND o.object_type_id = ? AND o.archived = 0
            LEFT JOIN association_types at ON at.id = a.association_type_id
            WHERE a.from_object_id = ?
        """
        params: List[Any] = [to_type_id, source]
        if association_type_id is not None:
            sql += " AND a.association_type_id = ?"
            params.append(association_type_id)
        sql += " ORDER BY a.rowid"
        grouped: Dict[str, AssociationResult] = {}
        for row in conn.execute(sql, params):
            target = str(row["to_object_id"])
            entry = grouped.setdefault(target, AssociationResult(to_object_id=target))
            entry.association_types.append(
                AssociationType(type_id=row["association_type_id"], category=row["category"], label=row["label"])
            )
        return list(grouped.values())

    @staticmethod
    def _page(results: List[AssociationResult], after: Optional[str], limit: Optional[int]) -> AssociationPage:
        if limit is None or limit <= 0:
            limit = DEFAULT_PAGE_LIMIT
        limit = min(limit, MAX_PAGE_LIMIT)
        offset = 0
        if after not in (None, ""):
            parsed = parse_record_id(after)
            if parsed is None:
                raise ValidationError(f'Invalid paging cursor "{after}"')
            offset = parsed
        window = results[offset : offset + limit]
        paging = None
        if offset + limit < len(results):
            paging = Paging(next=PagingNext(after=str(offset + limit)))
        return AssociationPage(results=window, paging=paging)

    def get_associations(
        self,
        from_type: str,
        from_id: Any,
        to_type: str,
        after: Optional[str] = None,
        limit: Optional[int] = DEFAULT_PAGE_LIMIT,
        association_type_id: Optional[int] = None,
    ) -> AssociationPage:
        """
        Edges from one record to live records of `to_type`, grouped per target.

        Targets appear in the order their first edge was written. The cursor
        is the index of the next target.
        """
        from_type_id, to_type_id = self._pair(from_type, to_type)
        with self.db.connection() as conn:
            source = self.records.require_live(conn, from_type_id, from_id)
            results = self._edges(conn, source, to_type_id, association_type_id)
        return self._page(results, after, limit)

    def _remove(
        self,
        conn: sqlite3.Connection,
        from_type_id: str,
        from_id: Any,
        to_type_id: str,
        to_id: Any,
        type_ids: Optional[Sequence[int]] = None,
    ) -> int:
        source = int(self.records.fetch_row(conn, from_type_id, from_id, include_archived=True)["id"])
        target = int(self.records.fetch_row(conn, to_type_id, to_id, include_archived=True)["id"])
        sql = "DELETE FROM associations WHERE from_object_id = ? AND to_object_id = ?"
        params: List[Any] = [source, target]
        if type_ids is not None:
            sql += f" AND association_type_id IN ({','.join('?' for _ in type_ids)})"
            params.extend(type_ids)
        return conn.execute(sql, params).rowcount

    def remove_associations(self, from_type: str, from_id: Any, to_type: str, to_id: Any) -> None:
        """
        Delete every edge of exactly this ordered pair, orphaned ones included.
        The reverse direction is untouched.
        """
        from_type_id, to_type_id = self._pair(from_type, to_type)
        with self.db.transaction() as conn:
            removed = self._remove(conn, from_type_id, from_id, to_type_id, to_id)
        log.info(
            "Associations removed",
            extra={"from_id": str(from_id), "to_id": str(to_id), "edges": removed},
        )

    # -- batches -----------------------------------------------------------

    def batch_associate_default(
        self, from_type: str, to_type: str, inputs: Sequence[Any]
    ) -> BatchResult[DefaultAssociationResult]:
        check_batch_size(inputs, MAX_ASSOCIATION_CREATE_BATCH)
        items = coerce_all(AssociationInput, inputs, "Invalid association input")
        from_type_id, to_type_id = self._pair(from_type, to_type)
        with self.db.connection() as conn:
            return self.run_batch(
                items,
                lambda item: DefaultAssociationResult(
                    from_=item.from_,
                    to=item.to,
                    association_spec=self._associate_default(
                        conn, from_type_id, item.from_.id, to_type_id, item.to.id
                    ),
                ),
                lambda item: {"fromId": [item.from_.id], "toId": [item.to.id]},
            )

    def batch_create(
        self, from_type: str, to_type: str, inputs: Sequence[Any]
    ) -> BatchResult[LabelsBetweenObjectPair]:
        check_batch_size(inputs, MAX_ASSOCIATION_CREATE_BATCH)
        items = coerce_all(AssociationInput, inputs, "Invalid association input")
        from_type_id, to_type_id = self._pair(from_type, to_type)
        with self.db.connection() as conn:
            return self.run_batch(
                items,
                lambda item: self._associate_with_labels(
                    conn, from_type_id, item.from_.id, to_type_id, item.to.id, item.types
                ),
                lambda item: {"fromId": [item.from_.id], "toId": [item.to.id]},
            )

    def batch_read(
        self, from_type: str, to_type: str, inputs: Sequence[Any]
    ) -> BatchResult[AssociationBatchReadResult]:
        check_batch_size(inputs, MAX_ASSOCIATION_READ_BATCH)
        items = [coerce(ObjectRef, item if isinstance(item, (dict, ObjectRef)) else {"id": item}) for item in inputs]
        from_type_id, to_type_id = self._pair(from_type, to_type)

        def read(ref: ObjectRef) -> AssociationBatchReadResult:
            source = self.records.require_live(conn, from_type_id, ref.id)
            page = self._page(self._edges(conn, source, to_type_id), None, None)
            return AssociationBatchReadResult(from_=ref, to=page.results, paging=page.paging)

        with self.db.connection() as conn:
            return self.run_batch(items, read, lambda ref: {"fromId": [ref.id]})

    def batch_archive(self, from_type: str, to_type: str, inputs: Sequence[Any]) -> BatchResult[Any]:
        check_batch_size(inputs, MAX_ASSOCIATION_ARCHIVE_BATCH)
        items = coerce_all(AssociationArchiveInput, inputs, "Invalid association input")
        from_type_id, to_type_id = self._pair(from_type, to_type)

        def archive(item: AssociationArchiveInput) -> None:
            for target in item.to:
                self._remove(conn, from_type_id, item.from_.id, to_type_id, target.id)

        with self.db.connection() as conn:
            return self.run_batch(
                items,
                archive,
                lambda item: {"fromId": [item.from_.id], "toId": [ref.id for ref in item.to]},
            )

    def batch_archive_labels(self, from_type: str, to_type: str, inputs: Sequence[Any]) -> BatchResult[Any]:
        """Remove only the listed typed edges; other edges of each pair stay."""
        check_batch_size(inputs, MAX_ASSOCIATION_ARCHIVE_BATCH)
        items = coerce_all(AssociationInput, inputs, "Invalid association input")
        from_type_id, to_type_id = self._pair(from_type, to_type)

        def archive(item: AssociationInput) -> None:
            if not item.types:
                raise ValidationError("At least one association type is required")
            type_ids = [spec.association_type_id for spec in item.types]
            self._remove(conn, from_type_id, item.from_.id, to_type_id, item.to.id, type_ids)

        with self.db.connection() as conn:
            return self.run_batch(
                items,
                archive,
                lambda item: {"fromId": [item.from_.id], "toId": [item.to.id]},
            )

    # -- label catalog -----------------------------------------------------

    @staticmethod
    def _row_to_label(row: sqlite3.Row) -> AssociationLabel:
        return AssociationLabel(
            category=row["category"],
            type_id=row["id"],
            label=row["label"],
            inverse_label=row["inverse_label"],
        )

    def list_labels(self, from_type: str, to_type: str) -> List[AssociationLabel]:
        from_type_id, to_type_id = self._pair(from_type, to_type)
        rows = self.db.query_all(
            "SELECT * FROM association_types WHERE from_object_type = ? AND to_object_type = ? ORDER BY id",
            (from_type_id, to_type_id),
        )
        return [self._row_to_label(row) for row in rows]

    @staticmethod
    def _check_label(label: Optional[str]) -> str:
        if label is None or not label.strip():
            raise ValidationError("Association label must not be empty")
        return label.strip()

    def _check_unique_label(
        self, conn: sqlite3.Connection, from_type_id: str, to_type_id: str, category: str, label: str
    ) -> None:
        clash = conn.execute(
            """
            SELECT id FROM association_types
            WHERE from_object_type = ? AND to_object_type = ? AND category = ? AND label = ?
            """,
            (from_type_id, to_type_id, category, label),
        ).fetchone()
        if clash is not None:
            raise ConflictError(f'Association label "{label}" already exists with type id {clash["id"]}')

    def create_label(
        self,
        from_type: str,
        to_type: str,
        label: str,
        inverse_label: Optional[str] = None,
        category: Any = AssociationCategory.USER_DEFINED,
    ) -> AssociationLabel:
        """
        Define a labeled association type for one directed type pair.

        Raises
        ------
        ValidationError
            Empty label or unknown category.
        ConflictError
            The pair already has this label in this category.
        """
        label = self._check_label(label)
        try:
            category_value = AssociationCategory(category).value
        except ValueError as exc:
            raise ValidationError(f'Unknown association category "{category}"') from exc
        from_type_id, to_type_id = self._pair(from_type, to_type)
        with self.db.transaction() as conn:
            self._check_unique_label(conn, from_type_id, to_type_id, category_value, label)
            cursor = conn.execute(
                """
                INSERT INTO association_types (from_object_type, to_object_type, category, label, inverse_label)
                VALUES (?, ?, ?, ?, ?)
                """,
                (from_type_id, to_type_id, category_value, label, inverse_label),
            )
            row = self._type_row(conn, int(cursor.lastrowid))
        log.info(
            "Association label created",
            extra={"from_type": from_type_id, "to_type": to_type_id, "type_id": row["id"], "label": label},
        )
        return self._row_to_label(row)

    def _label_row(self, conn: sqlite3.Connection, from_type_id: str, to_type_id: str, type_id: int) -> sqlite3.Row:
        row = self._type_row(conn, type_id)
        if row is None or (row["from_object_type"], row["to_object_type"]) != (from_type_id, to_type_id):
            raise NotFoundError(f"Association type {type_id} not found for {from_type_id} to {to_type_id}")
        if row["category"] == AssociationCategory.HUBSPOT_DEFINED.value:
            raise ValidationError(f"Association type {type_id} is built in and cannot be changed")
        return row

    def update_label(
        self,
        from_type: str,
        to_type: str,
        type_id: int,
        label: str,
        inverse_label: Optional[str] = None,
    ) -> AssociationLabel:
        label = self._check_label(label)
        from_type_id, to_type_id = self._pair(from_type, to_type)
        with self.db.transaction() as conn:
            row = self._label_row(conn, from_type_id, to_type_id, type_id)
            if row["label"] != label:
                self._check_unique_label(conn, from_type_id, to_type_id, row["category"], label)
            conn.execute(
                "UPDATE association_types SET label = ?, inverse_label = ? WHERE id = ?",
                (label, inverse_label, type_id),
            )
            return self._row_to_label(self._type_row(conn, type_id))

    def delete_label(self, from_type: str, to_type: str, type_id: int) -> None:
        """
        Remove a label definition. Edges using it are kept and read back
        with only their type id.
        """
        from_type_id, to_type_id = self._pair(from_type, to_type)
        with self.db.transaction() as conn:
            self._label_row(conn, from_type_id, to_type_id, type_id)
            conn.execute("DELETE FROM association_types WHERE id = ?", (type_id,))
        log.info("Association label deleted", extra={"type_id": type_id})


__all__ = ["AssociationGraph", "DEFAULT_PAGE_LIMIT"]
