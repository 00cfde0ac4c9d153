"""Count pointer resolution.

A SKU's count pointer names the imported field that decides how many units a
pick line needs. When that field is blank the remaining fields are tried in
``FALLBACK_ORDER``; when every field is blank the coil item's static par is
used. A manual override always wins.
"""

from typing import Any, Callable, List, Optional, Tuple

from vendrun.core.errors import InvalidPointer
from vendrun.models.sku import CountPointer

Accessor = Callable[[Any], Optional[int]]

# Tried in this order after the pointer's own field comes back blank.
FALLBACK_ORDER: List[Tuple[CountPointer, Accessor]] = [
    (CountPointer.TOTAL, lambda s: s.total),
    (CountPointer.NEED, lambda s: s.need),
    (CountPointer.PAR, lambda s: s.par),
    (CountPointer.CURRENT, lambda s: s.current),
    (CountPointer.FORECAST, lambda s: s.forecast),
]

ACCESSORS = dict(FALLBACK_ORDER)


def normalize_pointer(value: Any) -> CountPointer:
    """Parse a pointer name, case-insensitively. Blank means the default."""
    if isinstance(value, CountPointer):
        return value
    if value is None or (isinstance(value, str) and not value.strip()):
        return CountPointer.TOTAL
    if not isinstance(value, str):
        raise InvalidPointer(value)
    try:
        return CountPointer(value.strip().lower())
    except ValueError:
        raise InvalidPointer(value) from None


def resolve_count(
    coil_item: Any,
    snapshot: Any,
    pointer: Any,
    manual_override: Optional[int] = None,
) -> int:
    """Return the needed quantity for one pick line, never negative.

    ``snapshot`` is anything exposing ``current``, ``par``, ``need``,
    ``forecast`` and ``total`` attributes; ``coil_item`` only needs ``par``.
    """
    if manual_override is not None and manual_override >= 0:
        return manual_override

    pointer = normalize_pointer(pointer)
    value = None
    if snapshot is not None:
        value = ACCESSORS[pointer](snapshot)
        if value is None:
            for _, accessor in FALLBACK_ORDER:
                value = accessor(snapshot)
                if value is not None:
                    break

    if value is None:
        value = getattr(coil_item, "par", None) or 0

    return max(int(value), 0)
