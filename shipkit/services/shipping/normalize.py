"""
Helpers applied once at the parsing boundary of every carrier response.

Both JSON bodies converted from XML (UPS) and ``xmltodict`` output (DHL)
collapse a one-element list into the bare element. ``coerce_to_sequence`` undoes
that before any further processing.
"""

from collections.abc import Mapping
from typing import Any, List


def is_index_keyed(value: Any) -> bool:
    """
    True when value already is a sequence of items.

    A list or tuple qualifies. So does a mapping whose keys are exactly the
    contiguous zero-based integer indexes (as ints or digit strings). Anything
    else is treated as a single item.
    """
    if isinstance(value, (list, tuple)):
        return True
    if not isinstance(value, Mapping) or not value:
        return False

    indexes = set()
    for key in value.keys():
        if isinstance(key, bool):
            return False
        if isinstance(key, int):
            indexes.add(key)
        elif isinstance(key, str) and key.isdigit():
            indexes.add(int(key))
        else:
            return False
    return indexes == set(range(len(value)))


def coerce_to_sequence(value: Any) -> List[Any]:
    """Normalize a possibly collapsed sequence into a list"""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    if is_index_keyed(value):
        return [value[key] for key in sorted(value.keys(), key=int)]
    return [value]


def get_path(data: Any, path: str, default: Any = None) -> Any:
    """
    Dotted lookup into nested mappings, e.g. ``get_path(body, "RateResponse.RatedShipment")``.

    Returns ``default`` as soon as a segment is missing or the current value
    is not a mapping.
    """
    current = data
    for segment in path.split('.'):
        if not isinstance(current, Mapping) or segment not in current:
            return default
        current = current[segment]
    return current


def split_composite(value: str, separator: str, parts: int) -> List[str]:
    """Split ``value`` into exactly ``parts`` stripped pieces, padding with ''"""
    pieces = [piece.strip() for piece in value.split(separator, parts - 1)] if value else []
    return pieces + [''] * (parts - len(pieces))
