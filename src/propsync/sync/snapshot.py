"""
Snapshot computation. Pure: reads the subject, never the store.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Union

from pydantic_core import PydanticSerializationError, to_jsonable_python

from ..errors import ConfigurationError
from ..formatters import FormatterRegistry
from ..formatters import formatters as default_formatters
from ..subscriptions.models import FormatterSelection, KeySelection

if TYPE_CHECKING:
    from ..core.record import Record


class SnapshotBuilder:
    def __init__(self, formatters: Optional[FormatterRegistry] = None):
        self.formatters = formatters if formatters is not None else default_formatters

    def build(
        self, subject: "Record", selection: Union[KeySelection, FormatterSelection]
    ) -> Dict[str, Any]:
        if isinstance(selection, KeySelection):
            attributes = subject.attributes()
            return {key: attributes[key] for key in selection.keys if key in attributes}

        formatter = self.formatters.resolve(selection.formatter)
        try:
            shaped = formatter.apply(subject)
        except Exception as exc:
            raise ConfigurationError(
                f"formatter {selection.formatter!r} failed on {subject.ref}: {exc!r}"
            ) from exc
        if not isinstance(shaped, Mapping) or not all(isinstance(k, str) for k in shaped):
            raise ConfigurationError(
                f"formatter {selection.formatter!r} must return a mapping with str keys"
            )
        try:
            snapshot = to_jsonable_python(dict(shaped))
        except PydanticSerializationError as exc:
            raise ConfigurationError(
                f"formatter {selection.formatter!r} returned a value that is not JSON-ready: {exc}"
            ) from exc
        return {k: v for k, v in snapshot.items() if k not in selection.except_keys}
