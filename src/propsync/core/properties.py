"""
Free-form attribute bag ("props") that lives on every Record instance.

* Keys are plain strings, values anything JSON can hold.
* `merge` overwrites only the keys it is given; everything else stays.
* `as_bool` coerces the loose truthy strings forms tend to produce.
"""

from typing import Any, Dict, Iterator, Mapping

from pydantic import BaseModel

_TRUE = {"1", "true", "yes", "on", "y", "t"}
_FALSE = {"0", "false", "no", "off", "n", "f", ""}


# extras are read and written through __pydantic_extra__ directly so keys such
# as "get" or "list" never shadow the helpers on the model
def _extra(bag: "PropertiesBase") -> Dict[str, Any]:
    if bag.__pydantic_extra__ is None:
        object.__setattr__(bag, "__pydantic_extra__", {})
    return bag.__pydantic_extra__  # type: ignore[return-value]


class PropertiesBase(BaseModel):
    model_config = {"extra": "allow", "frozen": False, "arbitrary_types_allowed": True}

    # ------------------------------------------------------------------ #
    # convenience helpers
    # ------------------------------------------------------------------ #
    def get(self, key: str, default: Any = None) -> Any:
        return _extra(self).get(key, default)

    def add(self, **kv: Any) -> None:
        """Add arbitrary key/value pairs."""
        self.merge(kv)

    def merge(self, partial: Mapping[str, Any]) -> None:
        """Set many keys at once; keys absent from `partial` are untouched."""
        for key, value in partial.items():
            if not isinstance(key, str):
                raise TypeError(f"attribute keys must be str, got {key!r}")
            _extra(self)[key] = value

    def remove(self, key: str) -> None:
        """Remove a key (no error if absent)."""
        _extra(self).pop(key, None)

    def as_bool(self, key: str, default: bool = False) -> bool:
        value = _extra(self).get(key)
        if value is None:
            return default
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return value != 0
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE:
                return True
            if lowered in _FALSE:
                return False
        return bool(value)

    def list(self) -> Dict[str, Any]:
        """Return all keys/values as JSON-compatible data."""
        return self.model_dump(mode="json")

    def __contains__(self, key: object) -> bool:
        return key in _extra(self)

    def keys(self) -> Iterator[str]:
        return iter(list(_extra(self)))
