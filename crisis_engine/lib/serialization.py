"""JSON encoding for payloads written to local storage."""

import dataclasses
import json
from datetime import date, datetime
from enum import Enum
from typing import Any


class EngineJSONEncoder(json.JSONEncoder):
    """
    JSON encoder that handles:
    - dataclasses -> dict via dataclasses.asdict()
    - datetime/date -> .isoformat()
    - Enum -> .value
    - set/frozenset -> sorted list (stable output for idempotent writes)
    - tuple -> list (handled natively by json)
    """

    def default(self, obj: Any) -> Any:
        if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            return dataclasses.asdict(obj)

        if isinstance(obj, (datetime, date)):
            return obj.isoformat()

        if isinstance(obj, Enum):
            return obj.value

        if isinstance(obj, (set, frozenset)):
            return sorted(obj, key=str)

        return super().default(obj)


def dumps(payload: Any) -> str:
    """Serialize a payload with stable key order."""
    return json.dumps(payload, cls=EngineJSONEncoder, sort_keys=True)


__all__ = ["EngineJSONEncoder", "dumps"]
