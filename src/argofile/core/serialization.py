"""Dataset serializer: any JSON-compatible object graph <-> UTF-8 bytes."""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from .exceptions import CorruptDataError, InvalidArgumentError


def _default(obj: Any) -> Any:
    # Accounting data carries dates and exact amounts.
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return str(obj)
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class JsonSerializer:
    """
    Default serializer used by the container.

    Anything exposing ``dumps(dataset) -> bytes`` and ``loads(bytes)`` can be
    injected instead.
    """

    def __init__(self, indent: int | None = None):
        self.indent = indent

    def dumps(self, dataset: Any) -> bytes:
        try:
            text = json.dumps(dataset, default=_default, ensure_ascii=False, indent=self.indent)
        except (TypeError, ValueError) as exc:
            raise InvalidArgumentError(f"Dataset is not serializable: {exc}") from exc
        return text.encode("utf-8")

    def loads(self, data: bytes) -> Any:
        try:
            return json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise CorruptDataError(f"Dataset could not be decoded: {exc}") from exc
