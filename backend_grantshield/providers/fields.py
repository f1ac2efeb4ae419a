"""
Named-field lookup over provider responses.

Providers do not spell keys consistently (riskScore, RiskScore, risk.score ...).
Each adapter declares one FieldTable mapping a canonical field to its ordered
candidate keys; the first candidate present with a non-null value wins.
Candidates may be dotted paths into nested objects.
"""

from __future__ import annotations

from typing import Any, Mapping

_MISSING = object()


def _resolve(data: Any, path: str) -> Any:
    current = data
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def first_present(data: Any, candidates: tuple[str, ...] | list[str], default: Any = None) -> Any:
    """Return the value of the first candidate key/path with a non-null value."""
    for path in candidates:
        value = _resolve(data, path)
        if value is not _MISSING and value is not None:
            return value
    return default


class FieldTable:
    """
    Per-provider mapping of canonical field -> candidate keys.

        fields = FieldTable({"score": ("risk.score", "riskScore", "RiskScore")})
        fields.get(payload, "score", default=0)
    """

    def __init__(self, fields: Mapping[str, tuple[str, ...]]) -> None:
        self._fields = {name: tuple(keys) for name, keys in fields.items()}

    def __contains__(self, name: str) -> bool:
        return name in self._fields

    def candidates(self, name: str) -> tuple[str, ...]:
        try:
            return self._fields[name]
        except KeyError:
            raise KeyError(f"Unknown field: {name}") from None

    def get(self, data: Any, name: str, default: Any = None) -> Any:
        return first_present(data, self.candidates(name), default)

    def section(self, data: Any, name: str) -> dict[str, Any]:
        """Return a nested object for name, or an empty dict when absent or not an object."""
        value = self.get(data, name)
        return dict(value) if isinstance(value, Mapping) else {}

    def items(self, data: Any, name: str) -> list[Any]:
        """Return a list for name; a single object is wrapped, anything else is empty."""
        value = self.get(data, name)
        if isinstance(value, list):
            return value
        if isinstance(value, Mapping):
            return [value]
        return []

    def extract(self, data: Any) -> dict[str, Any]:
        """Resolve every field at once (absent fields map to None)."""
        return {name: first_present(data, keys) for name, keys in self._fields.items()}


def as_bool(value: Any) -> bool:
    """Interpret provider booleans ("true", "Y", 1, True)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "y", "1")
    return False


def as_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
