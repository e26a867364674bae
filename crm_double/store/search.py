"""
Search Compiler and executor.

`SearchCompiler` turns a SearchRequest into one parameterized SQL query over
`objects` plus one LEFT JOIN of `property_values` per distinct property the
filters or the sort reference. Filter groups are OR'd, filters inside a
group AND'd; every user value is a bound parameter. The compiler is pure
(no database access) so it can be exercised directly.

`SearchService` resolves the type, asks the Property Catalog which
properties are numeric, runs the count and page queries in one
transaction and materializes the page through the Record Store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Collection, Dict, List, Optional, Sequence, Tuple

from crm_double.domain.models import (
    Filter,
    FilterOperator,
    Paging,
    PagingNext,
    SearchRequest,
    SearchResult,
    SortDirection,
)
from crm_double.errors import ValidationError
from crm_double.infrastructure.db_factory import Database
from crm_double.store.abstract import AbstractStore, coerce
from crm_double.store.properties import PropertyCatalog, parse_number
from crm_double.store.records import RecordStore, parse_record_id
from crm_double.store.types import TypeRegistry
from crm_double.utils.clock import Clock
from crm_double.utils.logging import get_logger

log = get_logger(__name__)

MAX_FILTER_GROUPS = 5
MAX_FILTERS_PER_GROUP = 6
DEFAULT_SEARCH_LIMIT = 10
MAX_SEARCH_LIMIT = 200
MAX_SEARCH_TOTAL = 10000

WILDCARD = "*"
LIKE_ESCAPE = "\\"

DEFAULT_SEARCHABLE_PROPERTIES: Tuple[str, ...] = (
    "email",
    "firstname",
    "lastname",
    "name",
    "domain",
    "company",
    "hs_object_id",
    "phone",
    "website",
)

SEARCHABLE_PROPERTIES: Dict[str, Tuple[str, ...]] = {
    "0-1": ("email", "firstname", "lastname", "phone", "mobilephone", "company", "hs_object_id"),
    "0-2": ("name", "domain", "website", "phone", "hs_object_id"),
    "0-3": ("dealname", "hs_object_id"),
    "0-5": ("subject", "content", "hs_object_id"),
    "0-7": ("name", "description", "hs_sku", "hs_object_id"),
}

_OPERATORS = {op.value for op in FilterOperator}
_COMPARISONS = {
    FilterOperator.EQ.value: "=",
    FilterOperator.LT.value: "<",
    FilterOperator.LTE.value: "<=",
    FilterOperator.GT.value: ">",
    FilterOperator.GTE.value: ">=",
}
_SINGLE_VALUE = set(_COMPARISONS) | {
    FilterOperator.NEQ.value,
    FilterOperator.CONTAINS_TOKEN.value,
    FilterOperator.NOT_CONTAINS_TOKEN.value,
}


def searchable_properties(type_id: str, primary_display_property: Optional[str] = None) -> List[str]:
    """Properties the free-text `query` matches against for one type."""
    names = list(SEARCHABLE_PROPERTIES.get(type_id, DEFAULT_SEARCHABLE_PROPERTIES))
    if primary_display_property and primary_display_property not in names:
        names.append(primary_display_property)
    return names


def like_pattern(token: str) -> str:
    """
    LIKE pattern for a CONTAINS_TOKEN value.

    LIKE metacharacters in the token are escaped. Without a `*` the token
    matches anywhere in the value; with one, `*` matches any run of
    characters and the rest of the pattern is anchored.
    """
    escaped = (
        token.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )
    if WILDCARD in escaped:
        return escaped.replace(WILDCARD, "%")
    return f"%{escaped}%"


@dataclass
class CompiledSearch:
    """SQL fragments and bound parameters produced by SearchCompiler.compile."""

    from_clause: str
    where_clause: str
    order_clause: str
    params: List[Any] = field(default_factory=list)
    limit: int = DEFAULT_SEARCH_LIMIT
    offset: int = 0

    @property
    def count_sql(self) -> str:
        return f"SELECT COUNT(*) AS total{self.from_clause}{self.where_clause}"

    @property
    def page_sql(self) -> str:
        return f"SELECT o.*{self.from_clause}{self.where_clause}{self.order_clause} LIMIT ? OFFSET ?"

    @property
    def page_params(self) -> List[Any]:
        return [*self.params, self.limit, self.offset]


class SearchCompiler:
    """
    Validate and compile a SearchRequest for one object type.

    Parameters
    ----------
    number_properties : collection of str
        Properties declared `number`; they compare and sort numerically.
    searchable : sequence of str
        Properties the free-text `query` matches against.

    Example
    -------
        compiler = SearchCompiler(number_properties={"amount"})
        compiled = compiler.compile("0-3", {"filterGroups": [...], "limit": 20})
    """

    def __init__(
        self,
        number_properties: Collection[str] = (),
        searchable: Sequence[str] = DEFAULT_SEARCHABLE_PROPERTIES,
    ) -> None:
        self.number_properties = set(number_properties)
        self.searchable = list(searchable)
        self._aliases: Dict[str, str] = {}

    # -- validation --------------------------------------------------------

    @staticmethod
    def _validate_filter(flt: Filter) -> None:
        if not flt.property_name:
            raise ValidationError("Filter propertyName is required")
        if flt.operator not in _OPERATORS:
            raise ValidationError(f'Invalid filter operator "{flt.operator}"')
        if flt.operator in _SINGLE_VALUE and flt.value is None:
            raise ValidationError(f"Operator {flt.operator} requires a value")
        if flt.operator == FilterOperator.BETWEEN.value and (flt.value is None or flt.high_value is None):
            raise ValidationError("Operator BETWEEN requires value and highValue")
        if flt.operator in (FilterOperator.IN.value, FilterOperator.NOT_IN.value) and not flt.values:
            raise ValidationError(f"Operator {flt.operator} requires a non-empty values list")

    @staticmethod
    def page_window(request: SearchRequest) -> Tuple[int, int]:
        """
        Effective (limit, offset) for a request.

        Raises
        ------
        ValidationError
            Limit above the page cap, a malformed cursor, or an offset at or
            past the total result cap.
        """
        limit = request.limit
        if limit is not None and limit > MAX_SEARCH_LIMIT:
            raise ValidationError(f"Search limit must be less than or equal to {MAX_SEARCH_LIMIT}")
        if limit is None or limit <= 0:
            limit = DEFAULT_SEARCH_LIMIT
        offset = 0
        if request.after not in (None, ""):
            parsed = parse_record_id(request.after)
            if parsed is None:
                raise ValidationError(f'Invalid search cursor "{request.after}"')
            offset = parsed
        if offset >= MAX_SEARCH_TOTAL:
            raise ValidationError(f"Search results are capped at {MAX_SEARCH_TOTAL}; cursor {offset} is past the cap")
        return min(limit, MAX_SEARCH_TOTAL - offset), offset

    def validate(self, request: Any) -> SearchRequest:
        request = coerce(SearchRequest, request, "Invalid search request")
        if len(request.filter_groups) > MAX_FILTER_GROUPS:
            raise ValidationError(f"A search allows at most {MAX_FILTER_GROUPS} filter groups")
        for index, group in enumerate(request.filter_groups):
            if len(group.filters) > MAX_FILTERS_PER_GROUP:
                raise ValidationError(
                    f"Filter group {index} has {len(group.filters)} filters; "
                    f"at most {MAX_FILTERS_PER_GROUP} are allowed"
                )
            for flt in group.filters:
                self._validate_filter(flt)
        for sort in request.sorts:
            if not sort.property_name:
                raise ValidationError("Sort propertyName is required")
            if sort.direction not in (SortDirection.ASCENDING.value, SortDirection.DESCENDING.value):
                raise ValidationError(f'Invalid sort direction "{sort.direction}"')
        self.page_window(request)
        return request

    # -- compilation -------------------------------------------------------

    def _alias(self, name: str) -> str:
        if name not in self._aliases:
            self._aliases[name] = f"pv{len(self._aliases)}"
        return self._aliases[name]

    def _operand(self, name: str, value: str) -> Any:
        if name not in self.number_properties:
            return value
        number = parse_number(value)
        if number is None:
            raise ValidationError(f'Filter value "{value}" for number property "{name}" is not a number')
        return number

    def _column(self, name: str) -> str:
        alias = self._alias(name)
        if name in self.number_properties:
            return f"CAST({alias}.value AS REAL)"
        return f"{alias}.value"

    def _filter_clause(self, flt: Filter) -> Tuple[str, List[Any]]:
        name = flt.property_name
        alias = self._alias(name)
        raw = f"{alias}.value"
        column = self._column(name)
        present = f"({raw} IS NOT NULL AND {raw} != '')"
        op = flt.operator

        if op in _COMPARISONS:
            return f"({present} AND {column} {_COMPARISONS[op]} ?)", [self._operand(name, flt.value)]
        if op == FilterOperator.NEQ.value:
            return f"(NOT {present} OR {column} != ?)", [self._operand(name, flt.value)]
        if op == FilterOperator.BETWEEN.value:
            return (
                f"({present} AND {column} BETWEEN ? AND ?)",
                [self._operand(name, flt.value), self._operand(name, flt.high_value)],
            )
        if op in (FilterOperator.IN.value, FilterOperator.NOT_IN.value):
            placeholders = ",".join("?" for _ in flt.values)
            params = [self._operand(name, value) for value in flt.values]
            if op == FilterOperator.IN.value:
                return f"({present} AND {column} IN ({placeholders}))", params
            return f"(NOT {present} OR {column} NOT IN ({placeholders}))", params
        if op == FilterOperator.HAS_PROPERTY.value:
            return present, []
        if op == FilterOperator.NOT_HAS_PROPERTY.value:
            return f"(NOT {present})", []
        if op == FilterOperator.CONTAINS_TOKEN.value:
            return f"{raw} LIKE ? ESCAPE '\\'", [like_pattern(flt.value)]
        if op == FilterOperator.NOT_CONTAINS_TOKEN.value:
            return f"({raw} IS NULL OR {raw} NOT LIKE ? ESCAPE '\\')", [like_pattern(flt.value)]
        raise ValidationError(f'Invalid filter operator "{op}"')

    def compile(self, type_id: str, request: Any) -> CompiledSearch:
        """
        Validate `request` and compile it against records of `type_id`.

        Returns
        -------
        CompiledSearch
            FROM, WHERE and ORDER BY fragments with their bound parameters
            and the effective page window.
        """
        request = self.validate(request)
        limit, offset = self.page_window(request)
        self._aliases = {}

        where_params: List[Any] = [type_id]
        where = " WHERE o.object_type_id = ? AND o.archived = 0"

        group_clauses = []
        for group in request.filter_groups:
            clauses = []
            for flt in group.filters:
                clause, params = self._filter_clause(flt)
                clauses.append(clause)
                where_params.extend(params)
            if clauses:
                group_clauses.append("(" + " AND ".join(clauses) + ")")
        if group_clauses:
            where += " AND (" + " OR ".join(group_clauses) + ")"

        if request.query:
            placeholders = ",".join("?" for _ in self.searchable)
            where += (
                " AND EXISTS (SELECT 1 FROM property_values q WHERE q.object_id = o.id"
                f" AND q.property_name IN ({placeholders}) AND q.value LIKE ? ESCAPE '\\')"
            )
            where_params.extend(self.searchable)
            where_params.append(like_pattern(request.query))

        order = " ORDER BY o.id ASC"
        if request.sorts:
            sort = request.sorts[0]
            direction = "DESC" if sort.direction == SortDirection.DESCENDING.value else "ASC"
            order = f" ORDER BY {self._column(sort.property_name)} {direction}, o.id ASC"

        from_clause = " FROM objects o"
        join_params: List[Any] = []
        for name, alias in self._aliases.items():
            from_clause += (
                f" LEFT JOIN property_values {alias}"
                f" ON {alias}.object_id = o.id AND {alias}.property_name = ?"
            )
            join_params.append(name)

        return CompiledSearch(
            from_clause=from_clause,
            where_clause=where,
            order_clause=order,
            params=join_params + where_params,
            limit=limit,
            offset=offset,
        )


class SearchService(AbstractStore):
    """
    Executes compiled searches.

    Parameters
    ----------
    db : Database
        Shared database handle.
    registry : TypeRegistry
        Resolves type tokens.
    catalog : PropertyCatalog
        Supplies the numeric properties of the searched type.
    records : RecordStore
        Materializes result rows.
    clock : Clock, optional
        Timestamp source.
    """

    name = "search"

    def __init__(
        self,
        db: Database,
        registry: TypeRegistry,
        catalog: PropertyCatalog,
        records: RecordStore,
        clock: Optional[Clock] = None,
    ) -> None:
        super().__init__(db, clock)
        self.registry = registry
        self.catalog = catalog
        self.records = records

    def search(self, object_type: str, request: Any) -> SearchResult:
        """
        Run a search over live records of one type.

        Results are ordered by the first sort (ties broken by ascending id)
        or by id. `total` is capped at 10,000 and the next cursor is offered
        while the next offset is below it.

        Raises
        ------
        NotFoundError
            If the type does not resolve.
        ValidationError
            For any malformed request.
        """
        object_type_def = self.registry.resolve(object_type)
        type_id = object_type_def.id
        request = coerce(SearchRequest, request, "Invalid search request")
        names = self.records.projection(request.properties) if request.properties else None

        with self.db.transaction() as conn:
            compiler = SearchCompiler(
                number_properties=self.catalog.number_properties(conn, type_id),
                searchable=searchable_properties(type_id, object_type_def.primary_display_property),
            )
            compiled = compiler.compile(type_id, request)
            log.debug(
                "Compiled search",
                extra={"object_type": type_id, "sql": compiled.page_sql, "params": compiled.page_params},
            )
            total = int(conn.execute(compiled.count_sql, compiled.params).fetchone()["total"])
            rows = conn.execute(compiled.page_sql, compiled.page_params).fetchall()
            results = [self.records.materialize(conn, row, names) for row in rows]

        total = min(total, MAX_SEARCH_TOTAL)
        next_offset = compiled.offset + len(results)
        paging = None
        if results and next_offset < total:
            paging = Paging(next=PagingNext(after=str(next_offset)))
        return SearchResult(total=total, results=results, paging=paging)


__all__ = [
    "CompiledSearch",
    "DEFAULT_SEARCHABLE_PROPERTIES",
    "MAX_SEARCH_LIMIT",
    "MAX_SEARCH_TOTAL",
    "SearchCompiler",
    "SearchService",
    "like_pattern",
    "searchable_properties",
]
