"""
Filter expressions for structured (JSON) values.

A filter is either a single Condition on a top-level JSON field or a boolean
node (And, Or, Not) over other filters. Callers build one per list() call,
directly, from a mapping, or through a callback that receives a
FilterBuilder:

    await kv.list(where=lambda f: f.or_(
        f.and_(f.where("a", "=", 1), f.where("b", "=", 2)),
        f.and_(f.where("a", "=", 2), f.where("b", "=", 1)),
    ))

compile_filter() turns a filter into a parameterized SQL fragment. Field
names only ever reach SQL as bound JSON-path arguments; operators are
checked against a fixed allow-list before substitution.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Union

from sqlkv.exceptions import FilterError
from sqlkv.logging import get_logger

logger = get_logger(__name__)

ALLOWED_OPERATORS = frozenset({"=", ">", "<", "LIKE", "!="})

FilterValue = Union[str, int, float, bool]


@dataclass(frozen=True)
class Condition:
    """Comparison of one top-level JSON field against a value."""

    field: str
    operator: str
    value: FilterValue


@dataclass(frozen=True)
class And:
    children: tuple["Filter", ...]


@dataclass(frozen=True)
class Or:
    children: tuple["Filter", ...]


@dataclass(frozen=True)
class Not:
    child: "Filter"


Filter = Union[Condition, And, Or, Not]


@dataclass(frozen=True)
class CompiledFilter:
    """SQL fragment plus its positional arguments."""

    sql: str
    args: tuple[Any, ...]


class FilterBuilder:
    """Combinators handed to a where-callback."""

    def where(self, field: str, operator: str, value: FilterValue) -> Condition:
        return Condition(field, operator, value)

    def and_(self, *children: Filter | Mapping[str, Any]) -> And:
        return And(_coerce_children("AND", children))

    def or_(self, *children: Filter | Mapping[str, Any]) -> Or:
        return Or(_coerce_children("OR", children))

    def not_(self, *children: Filter | Mapping[str, Any]) -> Not:
        if len(children) != 1:
            raise FilterError(
                "NOT takes exactly one filter", context={"children": len(children)}
            )
        return Not(as_filter(children[0]))


WhereInput = Union[Filter, Mapping[str, Any], Callable[[FilterBuilder], Any]]


def _coerce_children(op: str, children: tuple[Any, ...]) -> tuple[Filter, ...]:
    if not children:
        raise FilterError(f"{op} needs at least one filter")
    return tuple(as_filter(child) for child in children)


def as_filter(where: WhereInput) -> Filter:
    """Normalize any accepted where-input into a Filter.

    Accepts a Filter, a mapping with field/operator/value keys, or a
    callback that receives a FilterBuilder and returns either of those.

    Raises:
        FilterError: If the input is not a recognizable filter.
    """
    if isinstance(where, (Condition, And, Or, Not)):
        return where
    if isinstance(where, Mapping):
        missing = {"field", "operator", "value"} - set(where)
        if missing:
            raise FilterError(
                "Filter mapping is missing keys", context={"missing": sorted(missing)}
            )
        return Condition(where["field"], where["operator"], where["value"])
    if callable(where):
        return as_filter(where(FilterBuilder()))
    raise FilterError(
        "Unsupported filter type", context={"type": type(where).__name__}
    )


def compile_filter(where: WhereInput, strict_operators: bool = True) -> CompiledFilter:
    """Compile a filter into a WHERE-clause fragment.

    The fragment is gated on value_type = 'json', so rows holding other
    value types never match.

    Args:
        where: Filter, mapping, or builder callback.
        strict_operators: Raise on operators outside the allow-list. When
            False, unknown operators are replaced with "=".

    Returns:
        CompiledFilter ready to be ANDed into a query.

    Raises:
        FilterError: On malformed filters.
    """
    sql, args = _compile(as_filter(where), strict_operators)
    return CompiledFilter(sql=f"value_type = 'json' AND ({sql})", args=tuple(args))


def _compile(node: Filter, strict: bool) -> tuple[str, list[Any]]:
    if isinstance(node, Condition):
        return _compile_condition(node, strict)
    if isinstance(node, Not):
        sql, args = _compile(node.child, strict)
        return f"NOT ({sql})", args
    if isinstance(node, (And, Or)):
        if not node.children:
            raise FilterError(f"{type(node).__name__.upper()} needs at least one filter")
        joiner = " AND " if isinstance(node, And) else " OR "
        parts: list[str] = []
        args: list[Any] = []
        for child in node.children:
            child_sql, child_args = _compile(child, strict)
            parts.append(child_sql)
            args.extend(child_args)
        return f"({joiner.join(parts)})", args
    raise FilterError("Unsupported filter node", context={"type": type(node).__name__})


def _compile_condition(cond: Condition, strict: bool) -> tuple[str, list[Any]]:
    if not isinstance(cond.field, str) or not cond.field:
        raise FilterError("Filter field must be a non-empty string", context={"field": cond.field})
    if '"' in cond.field:
        raise FilterError("Filter field cannot contain '\"'", context={"field": cond.field})
    if not isinstance(cond.value, (str, int, float, bool)):
        raise FilterError(
            "Filter value must be a string, number or boolean",
            context={"field": cond.field, "value_type": type(cond.value).__name__},
        )

    op = _check_operator(cond.operator, cond.field, strict)
    path = f'$."{cond.field}"'
    sql = f"json_extract(CASE WHEN value_type = 'json' THEN value_text END, ?) {op} ?"
    return sql, [path, cond.value]


def _check_operator(operator: Any, field: str, strict: bool) -> str:
    if not isinstance(operator, str):
        raise FilterError(
            "Filter operator must be a string",
            context={"field": field, "operator_type": type(operator).__name__},
        )
    op = operator.upper()
    if op in ALLOWED_OPERATORS:
        return op
    if strict:
        raise FilterError(
            "Unsupported filter operator",
            context={"field": field, "operator": operator, "allowed": sorted(ALLOWED_OPERATORS)},
        )
    logger.warning("Unknown filter operator, using '='", field=field, operator=operator)
    return "="
