"""Per-call context carrier passed through binding and authorization."""

from typing import Any, Dict, Iterator, Optional


class Namespace:
    """Mutable key/value bag owned by a single call.

    The command unit never reads it; only the binding engine (for
    injected parameters) and the authorizer do. ``Namespace()`` with no
    entries represents an anonymous caller.
    """

    def __init__(self, values: Optional[Dict[str, Any]] = None, **kwargs: Any):
        self._values: Dict[str, Any] = dict(values or {})
        self._values.update(kwargs)

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def put(self, key: str, value: Any) -> None:
        self._values[key] = value

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Namespace(keys={sorted(self._values)!r})"
