"""Facet filter expressions for hybrid search.

Filters use a small OData-style language, the same shape search-index
services accept::

    industry eq 'Banking' and (domain eq 'Cloud' or domain eq 'Data')
    not (document_type eq 'Proposal')
    created_date ge '2024-01-01T00:00:00Z'
    technologies/any(t: t eq 'Kubernetes' or t eq 'Terraform')

Supported: ``eq ne gt ge lt le``, ``and or not``, parentheses, single
quoted strings (``''`` escapes a quote), numbers, ``true``/``false`` and
``null``.  :func:`parse_filter` returns a tree of frozen nodes that can be
evaluated against a record's field values with ``matches``; backends walk
the same tree to build their native filter.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Union

from presales_core.models.document import DocumentFacets
from presales_core.models.search import COLLECTION_FACETS, FACET_FIELDS
from presales_core.utils.errors import SearchQueryFailure

FILTERABLE_FIELDS: frozenset[str] = frozenset(
    {*FACET_FIELDS, "id", "document_id", "version_id", "chunk_ordinal"}
)
DATETIME_FIELDS: frozenset[str] = frozenset({"created_date"})
COMPARISON_OPS: frozenset[str] = frozenset({"eq", "ne", "gt", "ge", "lt", "le"})

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<string>'(?:[^']|'')*')
  | (?P<number>-?\d+(?:\.\d+)?(?![\w-]))
  | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<punct>[()/:,])
    """,
    re.VERBOSE,
)

_KEYWORDS = {"and", "or", "not", "true", "false", "null", "any", *COMPARISON_OPS}


@dataclass(frozen=True)
class _Token:
    kind: str
    value: Any
    pos: int


# ---------------------------------------------------------------------------
# Expression tree
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Comparison:
    field: str
    op: str
    value: Any

    def matches(self, values: Mapping[str, Any]) -> bool:
        return _compare(values.get(self.field), self.op, self.value)


@dataclass(frozen=True)
class And:
    children: tuple["FilterExpression", ...]

    def matches(self, values: Mapping[str, Any]) -> bool:
        return all(c.matches(values) for c in self.children)


@dataclass(frozen=True)
class Or:
    children: tuple["FilterExpression", ...]

    def matches(self, values: Mapping[str, Any]) -> bool:
        return any(c.matches(values) for c in self.children)


@dataclass(frozen=True)
class Not:
    child: "FilterExpression"

    def matches(self, values: Mapping[str, Any]) -> bool:
        return not self.child.matches(values)


@dataclass(frozen=True)
class AnyMatch:
    """``field/any(var: body)`` over a collection field."""

    field: str
    variable: str
    body: "FilterExpression"

    def matches(self, values: Mapping[str, Any]) -> bool:
        items = values.get(self.field) or ()
        return any(self.body.matches({**values, self.variable: item}) for item in items)


FilterExpression = Union[Comparison, And, Or, Not, AnyMatch]


def record_values(
    facets: DocumentFacets,
    record_id: str | None = None,
    document_id: str | None = None,
    version_id: str | None = None,
    chunk_ordinal: int | None = None,
) -> dict[str, Any]:
    """Flatten a record's identifiers and facets into the filter namespace."""
    values: dict[str, Any] = facets.model_dump()
    values.update(
        id=record_id,
        document_id=document_id,
        version_id=version_id,
        chunk_ordinal=chunk_ordinal,
    )
    return values


# ---------------------------------------------------------------------------
# Evaluation helpers
# ---------------------------------------------------------------------------


def parse_datetime_literal(value: str) -> datetime:
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise SearchQueryFailure(message=f"Invalid date literal {value!r}") from exc
    return _as_utc(parsed)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _compare(actual: Any, op: str, expected: Any) -> bool:
    if isinstance(actual, datetime):
        actual = _as_utc(actual)
    if op == "eq":
        return actual == expected
    if op == "ne":
        return actual != expected
    if actual is None or expected is None:
        return False
    try:
        if op == "gt":
            return actual > expected
        if op == "ge":
            return actual >= expected
        if op == "lt":
            return actual < expected
        if op == "le":
            return actual <= expected
    except TypeError:
        return False
    raise SearchQueryFailure(message=f"Unknown comparison operator {op!r}")


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def _tokenize(text: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise SearchQueryFailure(
                message=f"Unexpected character {text[pos]!r} at position {pos} in filter"
            )
        kind = match.lastgroup
        raw = match.group()
        if kind == "string":
            tokens.append(_Token("literal", raw[1:-1].replace("''", "'"), pos))
        elif kind == "number":
            tokens.append(_Token("literal", float(raw) if "." in raw else int(raw), pos))
        elif kind == "ident":
            lowered = raw.lower()
            if lowered in ("true", "false"):
                tokens.append(_Token("literal", lowered == "true", pos))
            elif lowered == "null":
                tokens.append(_Token("literal", None, pos))
            elif lowered in _KEYWORDS:
                tokens.append(_Token(lowered, lowered, pos))
            else:
                tokens.append(_Token("ident", raw, pos))
        elif kind == "punct":
            tokens.append(_Token(raw, raw, pos))
        pos = match.end()
    return tokens


class _Parser:
    def __init__(self, text: str) -> None:
        self._text = text
        self._tokens = _tokenize(text)
        self._index = 0
        self._variables: set[str] = set()

    def parse(self) -> FilterExpression:
        if not self._tokens:
            raise SearchQueryFailure(message="Empty filter expression")
        expr = self._or()
        if self._peek() is not None:
            self._fail("Unexpected trailing input")
        return expr

    # -- grammar ---------------------------------------------------------

    def _or(self) -> FilterExpression:
        children = [self._and()]
        while self._accept("or"):
            children.append(self._and())
        return children[0] if len(children) == 1 else Or(tuple(children))

    def _and(self) -> FilterExpression:
        children = [self._not()]
        while self._accept("and"):
            children.append(self._not())
        return children[0] if len(children) == 1 else And(tuple(children))

    def _not(self) -> FilterExpression:
        if self._accept("not"):
            return Not(self._not())
        return self._primary()

    def _primary(self) -> FilterExpression:
        if self._accept("("):
            expr = self._or()
            self._expect(")")
            return expr

        name = self._expect("ident").value
        if self._accept("/"):
            return self._any(name)

        op_token = self._peek()
        if op_token is None or op_token.kind not in COMPARISON_OPS:
            self._fail(f"Expected a comparison operator after {name!r}")
        self._index += 1
        literal = self._expect("literal").value
        return self._comparison(name, op_token.kind, literal)

    def _any(self, field: str) -> FilterExpression:
        if field not in COLLECTION_FACETS:
            self._fail(f"{field!r} is not a collection field")
        self._expect("any")
        self._expect("(")
        variable = self._expect("ident").value
        self._expect(":")
        self._variables.add(variable)
        try:
            body = self._or()
        finally:
            self._variables.discard(variable)
        self._expect(")")
        return AnyMatch(field=field, variable=variable, body=body)

    def _comparison(self, field: str, op: str, literal: Any) -> Comparison:
        if field in self._variables:
            return Comparison(field=field, op=op, value=literal)
        if field not in FILTERABLE_FIELDS:
            self._fail(f"Unknown filter field {field!r}")
        if field in COLLECTION_FACETS:
            self._fail(f"Use {field}/any(...) to filter the collection field {field!r}")
        if field in DATETIME_FIELDS and isinstance(literal, str):
            literal = parse_datetime_literal(literal)
        return Comparison(field=field, op=op, value=literal)

    # -- token helpers -----------------------------------------------------

    def _peek(self) -> _Token | None:
        return self._tokens[self._index] if self._index < len(self._tokens) else None

    def _accept(self, kind: str) -> bool:
        token = self._peek()
        if token is not None and token.kind == kind:
            self._index += 1
            return True
        return False

    def _expect(self, kind: str) -> _Token:
        token = self._peek()
        if token is None or token.kind != kind:
            self._fail(f"Expected {kind!r}")
        self._index += 1
        return token

    def _fail(self, reason: str) -> None:
        token = self._peek()
        where = f"position {token.pos}" if token else "end of input"
        raise SearchQueryFailure(message=f"Invalid filter {self._text!r}: {reason} at {where}")


def parse_filter(text: str | None) -> FilterExpression | None:
    """Parse *text* into a filter tree; ``None``/blank means "no filter".

    Raises
    ------
    SearchQueryFailure
        If the expression is malformed or references an unknown field.
    """
    if text is None or not text.strip():
        return None
    return _Parser(text).parse()
