"""
Merge a freshly fetched entity into the value already on screen.

Per-field precedence (top-level fields only):
  positive_fields   fetched if a number > 0, else previous if a number > 0, else 0
  everything else   fetched if truthy, else previous

A partial server response therefore never regresses data already known to be
good (a zero totalInScope from a row that lacks the column, an empty symbol
list, a missing location).
"""
from typing import Any, Dict, Iterable, Optional, TypeVar

from pydantic import BaseModel

M = TypeVar("M")

DREAM_POSITIVE_FIELDS = ("totalInScope", "matchCount", "percentile", "clarity")


def _as_dict(value: Any) -> Dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, BaseModel):
        return value.model_dump()
    return dict(value)


def _positive(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


def merge_fields(
    previous: Dict[str, Any],
    fetched: Dict[str, Any],
    positive_fields: Iterable[str] = DREAM_POSITIVE_FIELDS,
) -> Dict[str, Any]:
    positive = set(positive_fields)
    out = dict(previous)
    for name in set(previous) | set(fetched):
        new = fetched.get(name)
        old = previous.get(name)
        if name in positive:
            if _positive(new):
                out[name] = new
            elif _positive(old):
                out[name] = old
            else:
                out[name] = 0
        else:
            out[name] = new if new else old
    return out


def merge_entity(
    previous: Optional[M],
    fetched: M,
    positive_fields: Iterable[str] = DREAM_POSITIVE_FIELDS,
) -> M:
    """Returns a value of the fetched value's type (pydantic model or dict)."""
    if previous is None:
        return fetched
    merged = merge_fields(_as_dict(previous), _as_dict(fetched), positive_fields)
    if isinstance(fetched, BaseModel):
        return type(fetched).model_validate(merged)
    return merged
