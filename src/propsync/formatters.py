"""
Named attribute formatters.

A formatter shapes a subject into the mapping a reference should mirror.
Register one under a name and point a `FormatterSelection` at that name:

    @formatters.register("contact_card")
    def contact_card(contact):
        return {"label": f"{contact.name} <{contact.email}>"}
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional, Protocol, runtime_checkable

from .errors import ConfigurationError

if TYPE_CHECKING:
    from .core.record import Record


@runtime_checkable
class AttributeFormatter(Protocol):
    def apply(self, subject: "Record") -> Mapping[str, Any]: ...


class FunctionFormatter:
    """Adapts a plain callable to the AttributeFormatter protocol."""

    def __init__(self, fn: Callable[["Record"], Mapping[str, Any]]):
        self.fn = fn

    def apply(self, subject: "Record") -> Mapping[str, Any]:
        return self.fn(subject)

    def __repr__(self) -> str:
        return f"FunctionFormatter({getattr(self.fn, '__name__', self.fn)!r})"


class FormatterRegistry:
    def __init__(self):
        self._formatters: Dict[str, AttributeFormatter] = {}

    def register(self, name: str, formatter: Optional[Any] = None):
        """Register `formatter` under `name`; usable as a decorator.

        Accepts an AttributeFormatter instance, a class implementing `apply`
        (instantiated with no arguments) or a plain function.
        """

        def decorator(target):
            if isinstance(target, type):
                instance = target()
            elif isinstance(target, AttributeFormatter):
                instance = target
            elif callable(target):
                instance = FunctionFormatter(target)
            else:
                raise ConfigurationError(f"cannot use {target!r} as formatter {name!r}")
            self._formatters[name] = instance
            return target

        if formatter is not None:
            return decorator(formatter)
        return decorator

    def resolve(self, name: str) -> AttributeFormatter:
        try:
            return self._formatters[name]
        except KeyError:
            raise ConfigurationError(f"no formatter registered as {name!r}") from None

    def __contains__(self, name: object) -> bool:
        return name in self._formatters


# Process-wide registry used when none is passed explicitly
formatters = FormatterRegistry()
