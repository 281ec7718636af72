# =============================================================================
# ministry_core/data/filters.py
# Equality/range predicates shared by remote queries and mirror lookups
# =============================================================================
"""
A Filter is a conjunction of simple predicates. The same Filter is applied to
a Supabase query builder (remote) and evaluated in Python against mirror rows
(local), so a screen reads the same rows from either side.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from ministry_core.errors import ConfigurationError
from ministry_core.data.models import CollectionSpec, Profile

OPERATORS = ("eq", "neq", "gt", "gte", "lt", "lte", "in")


def _normalize(value: Any) -> Any:
    # Ids arrive as int from one side and str from the other
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


def _compare(left: Any, op: str, right: Any) -> bool:
    if op == "eq":
        return _normalize(left) == _normalize(right)
    if op == "neq":
        return _normalize(left) != _normalize(right)
    if op == "in":
        return _normalize(left) in {_normalize(v) for v in right}
    if left is None:
        return False
    try:
        if op == "gt":
            return left > right
        if op == "gte":
            return left >= right
        if op == "lt":
            return left < right
        if op == "lte":
            return left <= right
    except TypeError:
        return False
    raise ConfigurationError(f"Unsupported operator: {op}", config_key="op")


@dataclass(frozen=True)
class Predicate:
    """One ``field <op> value`` condition."""
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in OPERATORS:
            raise ConfigurationError(
                f"Unsupported operator: {self.op}",
                config_key="op",
                details={"supported": OPERATORS},
            )
        if self.op == "in" and isinstance(self.value, (str, bytes)):
            raise ConfigurationError("'in' expects a collection of values", config_key="value")

    def matches(self, row: Dict[str, Any]) -> bool:
        return _compare(row.get(self.field), self.op, self.value)

    def apply(self, query):
        """Apply to a postgrest request builder."""
        if self.op == "in":
            return query.in_(self.field, list(self.value))
        return getattr(query, self.op)(self.field, self.value)


@dataclass(frozen=True)
class Filter:
    """
    Conjunction of predicates.

    Usage:
        Filter.eq("unit_id", "u1").and_("event_date", "gte", "2024-01-01")
    """
    predicates: Tuple[Predicate, ...] = field(default_factory=tuple)

    @classmethod
    def where(cls, field_name: str, op: str, value: Any) -> Filter:
        return cls((Predicate(field_name, op, value),))

    @classmethod
    def eq(cls, field_name: str, value: Any) -> Filter:
        return cls.where(field_name, "eq", value)

    @classmethod
    def of(cls, **equalities: Any) -> Filter:
        return cls(tuple(Predicate(k, "eq", v) for k, v in equalities.items()))

    def and_(self, field_name: str, op: str, value: Any) -> Filter:
        return Filter(self.predicates + (Predicate(field_name, op, value),))

    def merge(self, other: Optional[Filter]) -> Filter:
        if other is None:
            return self
        return Filter(self.predicates + other.predicates)

    def matches(self, row: Dict[str, Any]) -> bool:
        return all(p.matches(row) for p in self.predicates)

    def apply(self, query):
        for predicate in self.predicates:
            query = predicate.apply(query)
        return query

    def fields(self) -> Iterable[str]:
        return (p.field for p in self.predicates)

    def __bool__(self) -> bool:
        return bool(self.predicates)


# Mirror lookups also accept an arbitrary row predicate
RowPredicate = Callable[[Dict[str, Any]], bool]


def scope_filter(
    spec: CollectionSpec,
    where: Optional[Filter],
    profile: Optional[Profile],
) -> Optional[Filter]:
    """
    Narrow ``where`` to the caller's unit.

    Executives and unscoped collections pass through unchanged. A
    non-executive profile without a unit sees nothing: ``None`` is returned
    and callers must treat it as an empty result. This is a UX filter; row
    level security in the backend is the actual boundary.
    """
    base = where or Filter()
    if profile is None or not spec.unit_scoped or profile.is_executive:
        return base
    if profile.unit_id is None:
        return None
    return base.and_(spec.unit_field, "eq", profile.unit_id)


def visible_to(spec: CollectionSpec, row: Dict[str, Any], profile: Optional[Profile]) -> bool:
    """True when ``row`` may be shown to ``profile`` under unit scoping."""
    if profile is None or not spec.unit_scoped or profile.is_executive:
        return True
    if profile.unit_id is None:
        return False
    return _normalize(row.get(spec.unit_field)) == _normalize(profile.unit_id)
