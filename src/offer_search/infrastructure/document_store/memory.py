"""In-memory document store that evaluates a subset of Elasticsearch DSL.

Documents live in a ``dict`` keyed by document id.  Mutations are serialised
through an :class:`asyncio.Lock`; queries evaluate against a snapshot taken
under the lock, so readers never observe a half-written document.

Supported query clauses: ``match_all``, ``match_none``, ``bool``, ``term``,
``terms``, ``exists``, ``range``, ``ids``, ``nested`` (with ``inner_hits``)
and ``multi_match`` (``best_fields`` and ``bool_prefix``, optional
``fuzziness: AUTO``).  Supported aggregations: ``terms`` and ``range``.
``.keyword`` suffixes are ignored: every field matches exactly on its raw
value, the way a keyword sub-field would.  ``.autocomplete`` sub-fields
behave like an edge-ngram index: every query token may match as a prefix.
"""
from __future__ import annotations

import asyncio
import copy
import re
import time
from collections.abc import Callable
from typing import Any, NamedTuple

import structlog

from offer_search.infrastructure.document_store import (
    AggregationBucket,
    DocumentStore,
    StoreHit,
    StoreResponse,
    compose_query,
)
from offer_search.shared.exceptions import InvalidQueryError

logger = structlog.get_logger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+")


# ---------------------------------------------------------------------------
# Evaluation primitives
# ---------------------------------------------------------------------------

class _Scope(NamedTuple):
    """Where field paths resolve: the document root, or a nested element."""

    document_id: str
    root: dict[str, Any]
    path: str | None = None
    element: dict[str, Any] | None = None


class _Match(NamedTuple):
    matched: bool
    score: float
    inner_hits: dict[str, list[dict[str, Any]]]


_NO_MATCH = _Match(False, 0.0, {})


_SUBFIELDS = (".keyword", ".autocomplete")


def _strip_subfield(field: str) -> str:
    for suffix in _SUBFIELDS:
        if field.endswith(suffix):
            return field[: -len(suffix)]
    return field


def _walk(node: Any, parts: list[str]) -> list[Any]:
    if node is None:
        return []
    if isinstance(node, list):
        return [value for item in node for value in _walk(item, parts)]
    if not parts:
        return [node]
    if not isinstance(node, dict):
        return []
    return _walk(node.get(parts[0]), parts[1:])


def _field_values(scope: _Scope, field: str) -> list[Any]:
    field = _strip_subfield(field)
    if scope.path and scope.element is not None and field.startswith(scope.path + "."):
        return _walk(scope.element, field[len(scope.path) + 1:].split("."))
    return _walk(scope.root, field.split("."))


def _normalise(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _single_field(clause: dict[str, Any]) -> tuple[str, Any]:
    items = [(k, v) for k, v in clause.items() if k not in ("boost", "_name")]
    if len(items) != 1:
        raise InvalidQueryError("Expected exactly one field", context={"clause": clause})
    return items[0]


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _allowed_edits(token: str) -> int:
    if len(token) <= 2:
        return 0
    if len(token) <= 5:
        return 1
    return 2


def _edit_distance(a: str, b: str) -> int:
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


def _token_matches(token: str, candidates: set[str], *, prefix: bool, fuzzy: bool) -> bool:
    if token in candidates:
        return True
    if prefix and any(c.startswith(token) for c in candidates):
        return True
    if fuzzy:
        edits = _allowed_edits(token)
        if edits and any(
            abs(len(c) - len(token)) <= edits and _edit_distance(token, c) <= edits
            for c in candidates
        ):
            return True
    return False


def _merge_inner(target: dict[str, list[dict[str, Any]]], source: dict[str, list[dict[str, Any]]]) -> None:
    for name, elements in source.items():
        target.setdefault(name, []).extend(elements)


# ---------------------------------------------------------------------------
# Query clauses
# ---------------------------------------------------------------------------

def _match_all(clause: dict[str, Any], scope: _Scope) -> _Match:
    return _Match(True, 1.0, {})


def _match_none(clause: dict[str, Any], scope: _Scope) -> _Match:
    return _NO_MATCH


def _ids(clause: dict[str, Any], scope: _Scope) -> _Match:
    values = {str(v) for v in clause.get("values", [])}
    return _Match(True, 1.0, {}) if scope.document_id in values else _NO_MATCH


def _term(clause: dict[str, Any], scope: _Scope) -> _Match:
    field, value = _single_field(clause)
    if isinstance(value, dict):
        value = value.get("value")
    expected = _normalise(value)
    found = any(_normalise(v) == expected for v in _field_values(scope, field))
    return _Match(True, 1.0, {}) if found else _NO_MATCH


def _terms(clause: dict[str, Any], scope: _Scope) -> _Match:
    field, values = _single_field(clause)
    expected = {_normalise(v) for v in values}
    found = any(_normalise(v) in expected for v in _field_values(scope, field))
    return _Match(True, 1.0, {}) if found else _NO_MATCH


def _exists(clause: dict[str, Any], scope: _Scope) -> _Match:
    values = _field_values(scope, clause["field"])
    return _Match(True, 1.0, {}) if values else _NO_MATCH


def _range(clause: dict[str, Any], scope: _Scope) -> _Match:
    field, bounds = _single_field(clause)
    for value in _field_values(scope, field):
        if _within(value, bounds):
            return _Match(True, 1.0, {})
    return _NO_MATCH


def _within(value: Any, bounds: dict[str, Any]) -> bool:
    checks: dict[str, Callable[[Any, Any], bool]] = {
        "gt": lambda v, b: v > b,
        "gte": lambda v, b: v >= b,
        "lt": lambda v, b: v < b,
        "lte": lambda v, b: v <= b,
    }
    for op, bound in bounds.items():
        if op not in checks:
            continue
        left, right = _number(value), _number(bound)
        if left is None or right is None:
            left, right = str(value), str(bound)
        if not checks[op](left, right):
            return False
    return True


def _bool(clause: dict[str, Any], scope: _Scope) -> _Match:
    score = 0.0
    inner: dict[str, list[dict[str, Any]]] = {}

    def clauses(key: str) -> list[dict[str, Any]]:
        value = clause.get(key) or []
        return value if isinstance(value, list) else [value]

    for child in clauses("must"):
        result = _evaluate(child, scope)
        if not result.matched:
            return _NO_MATCH
        score += result.score
        _merge_inner(inner, result.inner_hits)

    for child in clauses("filter"):
        result = _evaluate(child, scope)
        if not result.matched:
            return _NO_MATCH
        _merge_inner(inner, result.inner_hits)

    for child in clauses("must_not"):
        if _evaluate(child, scope).matched:
            return _NO_MATCH

    should = clauses("should")
    if should:
        default_minimum = 0 if (clauses("must") or clauses("filter")) else 1
        minimum = int(clause.get("minimum_should_match", default_minimum))
        matched = [r for r in (_evaluate(c, scope) for c in should) if r.matched]
        if len(matched) < minimum:
            return _NO_MATCH
        for result in matched:
            score += result.score
            _merge_inner(inner, result.inner_hits)

    return _Match(True, score, inner)


def _nested(clause: dict[str, Any], scope: _Scope) -> _Match:
    path = clause["path"]
    inner_query = clause.get("query") or {"match_all": {}}
    matched: list[dict[str, Any]] = []
    best = 0.0
    for element in _walk(scope.root, path.split(".")):
        if not isinstance(element, dict):
            continue
        result = _evaluate(inner_query, _Scope(scope.document_id, scope.root, path, element))
        if result.matched:
            matched.append(element)
            best = max(best, result.score)
    if not matched:
        return _NO_MATCH

    inner: dict[str, list[dict[str, Any]]] = {}
    if "inner_hits" in clause:
        options = clause["inner_hits"] or {}
        name = options.get("name", path)
        inner[name] = [copy.deepcopy(e) for e in matched[: options.get("size", 3)]]
    return _Match(True, best, inner)


def _multi_match(clause: dict[str, Any], scope: _Scope) -> _Match:
    tokens = _tokenize(str(clause.get("query", "")))
    if not tokens:
        return _NO_MATCH
    bool_prefix = clause.get("type") == "bool_prefix"
    fuzzy = str(clause.get("fuzziness", "")).upper() == "AUTO"

    best = 0.0
    for entry in clause.get("fields", []):
        name, _, boost = entry.partition("^")
        weight = float(boost) if boost else 1.0
        edge_ngram = name.endswith(".autocomplete")
        text = " ".join(str(v) for v in _field_values(scope, name))
        candidates = set(_tokenize(text))
        if not candidates:
            continue
        hits = sum(
            1
            for position, token in enumerate(tokens)
            if _token_matches(
                token,
                candidates,
                prefix=edge_ngram or (bool_prefix and position == len(tokens) - 1),
                fuzzy=fuzzy,
            )
        )
        best = max(best, weight * hits)
    return _Match(best > 0, best, {})


_QUERY_HANDLERS: dict[str, Callable[[dict[str, Any], _Scope], _Match]] = {
    "match_all": _match_all,
    "match_none": _match_none,
    "ids": _ids,
    "term": _term,
    "terms": _terms,
    "exists": _exists,
    "range": _range,
    "bool": _bool,
    "nested": _nested,
    "multi_match": _multi_match,
}


def _evaluate(query: dict[str, Any], scope: _Scope) -> _Match:
    if len(query) != 1:
        raise InvalidQueryError("Query clause must have exactly one key", context={"clause": query})
    kind, clause = next(iter(query.items()))
    handler = _QUERY_HANDLERS.get(kind)
    if handler is None:
        raise InvalidQueryError(f"Unsupported query clause: {kind}", context={"clause": kind})
    return handler(clause or {}, scope)


# ---------------------------------------------------------------------------
# Sorting, aggregation, projection
# ---------------------------------------------------------------------------

class _Row(NamedTuple):
    document_id: str
    source: dict[str, Any]
    match: _Match


def _sort_clauses(sort: list[Any]) -> list[tuple[str, bool]]:
    result: list[tuple[str, bool]] = []
    for clause in sort:
        if isinstance(clause, str):
            result.append((clause, clause == "_score"))
            continue
        field, options = next(iter(clause.items()))
        if isinstance(options, str):
            order = options
        else:
            order = options.get("order", "desc" if field == "_score" else "asc")
        result.append((field, order == "desc"))
    return result


def _sortable(value: Any) -> tuple[int, Any]:
    number = _number(value)
    if number is not None and not isinstance(value, str):
        return (0, number)
    return (1, _normalise(value))


def _sort_rows(rows: list[_Row], sort: list[Any] | None) -> list[_Row]:
    clauses = _sort_clauses(sort) if sort else [("_score", True)]
    for field, descending in reversed(clauses):
        if field == "_score":
            rows = sorted(rows, key=lambda r: r.match.score, reverse=descending)
            continue

        def first(row: _Row, field: str = field) -> Any:
            values = _field_values(_Scope(row.document_id, row.source), field)
            return values[0] if values else None

        present = [r for r in rows if first(r) is not None]
        missing = [r for r in rows if first(r) is None]
        present.sort(key=lambda r: _sortable(first(r)), reverse=descending)
        rows = present + missing
    return rows


def _aggregate(aggregations: dict[str, Any], rows: list[_Row]) -> dict[str, list[AggregationBucket]]:
    result: dict[str, list[AggregationBucket]] = {}
    for name, body in aggregations.items():
        if "terms" in body:
            field = body["terms"]["field"]
            size = body["terms"].get("size", 10)
            counts: dict[str, int] = {}
            for row in rows:
                for key in {_normalise(v) for v in _field_values(_Scope(row.document_id, row.source), field)}:
                    counts[key] = counts.get(key, 0) + 1
            ordered = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:size]
            result[name] = [AggregationBucket(key=k, count=c) for k, c in ordered]
        elif "range" in body:
            field = body["range"]["field"]
            buckets = []
            for bucket in body["range"].get("ranges", []):
                low, high = bucket.get("from"), bucket.get("to")
                key = bucket.get("key") or f"{low if low is not None else '*'}-{high if high is not None else '*'}"
                count = 0
                for row in rows:
                    values = [_number(v) for v in _field_values(_Scope(row.document_id, row.source), field)]
                    if any(
                        v is not None and (low is None or v >= low) and (high is None or v < high)
                        for v in values
                    ):
                        count += 1
                buckets.append(AggregationBucket(key=key, count=count))
            result[name] = buckets
        else:
            raise InvalidQueryError(f"Unsupported aggregation: {name}", context={"aggregation": body})
    return result


def _project(source: dict[str, Any], includes: list[str] | None) -> dict[str, Any]:
    if not includes:
        return copy.deepcopy(source)
    roots = {field.split(".")[0] for field in includes}
    return {k: copy.deepcopy(v) for k, v in source.items() if k in roots}


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class InMemoryDocumentStore(DocumentStore):
    """Dict-backed :class:`DocumentStore` for tests and local runs."""

    def __init__(self) -> None:
        self._documents: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()
        self._index_ready = False
        logger.info("memory_document_store_initialised")

    def __len__(self) -> int:
        return len(self._documents)

    async def ensure_index(self) -> bool:
        async with self._lock:
            created = not self._index_ready
            self._index_ready = True
        return created

    async def upsert(self, document_id: str, source: dict[str, Any]) -> None:
        async with self._lock:
            self._documents[document_id] = copy.deepcopy(source)
            self._index_ready = True

    async def get(self, document_id: str) -> dict[str, Any] | None:
        async with self._lock:
            source = self._documents.get(document_id)
            return copy.deepcopy(source) if source is not None else None

    async def delete(self, document_id: str) -> bool:
        async with self._lock:
            return self._documents.pop(document_id, None) is not None

    async def query(
        self,
        *,
        filter: dict[str, Any] | None = None,
        full_text: dict[str, Any] | None = None,
        sort: list[Any] | None = None,
        from_: int = 0,
        size: int = 10,
        aggregations: dict[str, Any] | None = None,
        source_includes: list[str] | None = None,
    ) -> StoreResponse:
        start = time.perf_counter()
        query = compose_query(filter, full_text)

        async with self._lock:
            snapshot = list(self._documents.items())

        rows: list[_Row] = []
        for document_id, source in snapshot:
            match = _evaluate(query, _Scope(document_id, source))
            if match.matched:
                rows.append(_Row(document_id, source, match))

        ordered = _sort_rows(rows, sort)
        page = ordered[from_: from_ + size]
        hits = [
            StoreHit(
                id=row.document_id,
                score=row.match.score,
                source=_project(row.source, source_includes),
                inner_hits=row.match.inner_hits,
            )
            for row in page
        ]

        return StoreResponse(
            total=len(rows),
            hits=hits,
            aggregations=_aggregate(aggregations, rows) if aggregations else {},
            took_ms=round((time.perf_counter() - start) * 1000, 2),
        )

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        logger.info("memory_document_store_closed", documents=len(self._documents))


__all__ = ["InMemoryDocumentStore"]
