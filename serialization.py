"""
Serialization utilities for exporting automation state as JSON.

Schedule views, trigger outcomes and schedule states are exported through
``to_json``. Objects with a ``to_dict()`` method, pydantic models,
dataclasses, enums and datetimes are all converted; datetimes become ISO
8601 strings and can be parsed back with ``from_json(..., parse_dates=True)``.
"""

import dataclasses
import datetime
import json
import re
import uuid
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Type, TypeVar, Union

from pydantic import BaseModel

T = TypeVar('T')

# ISO 8601 datetime, with optional fraction and offset
ISO_DATETIME = re.compile(r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}(\.\d+)?(Z|[+-]\d{2}:\d{2})?$")


def to_json(obj: Any, indent: Optional[int] = None, **kwargs) -> str:
    """
    Serialize an object to JSON.

    Args:
        obj: Object to serialize
        indent: Indentation (defaults to config.system.json_indent)
        **kwargs: Additional arguments to pass to json.dumps()

    Returns:
        JSON string representation of the object
    """
    if indent is None:
        from config import config
        indent = config.system.json_indent
    return json.dumps(obj, indent=indent, default=_json_serializer, **kwargs)


def from_json(
    json_str: str,
    cls: Optional[Type[T]] = None,
    parse_dates: bool = False
) -> Union[T, Dict[str, Any]]:
    """
    Deserialize a JSON string.

    Args:
        json_str: JSON string to deserialize
        cls: Optional class with from_dict() (or a pydantic model) to build
        parse_dates: If True, parse ISO datetime strings into datetimes

    Returns:
        Instance of cls when given, otherwise the parsed JSON data
    """
    if parse_dates:
        data = json.loads(json_str, object_hook=_parse_date_strings)
    else:
        data = json.loads(json_str)

    if cls is None:
        return data
    if hasattr(cls, 'from_dict'):
        return cls.from_dict(data)
    if issubclass(cls, BaseModel):
        return cls.model_validate(data)
    return data


def _parse_date_strings(obj: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in obj.items():
        if isinstance(value, str) and ISO_DATETIME.match(value):
            try:
                obj[key] = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError:
                # Looked like a date but is not one
                pass
    return obj


def _json_serializer(obj: Any) -> Any:
    """
    Convert values json.dumps cannot handle natively.

    Raises:
        TypeError: For unsupported types
    """
    if hasattr(obj, 'to_dict'):
        return obj.to_dict()

    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")

    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)

    if isinstance(obj, Enum):
        return obj.value

    # datetime is a subclass of date
    if isinstance(obj, (datetime.datetime, datetime.date)):
        return obj.isoformat()

    if isinstance(obj, Decimal):
        return float(obj)

    if isinstance(obj, uuid.UUID):
        return str(obj)

    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")
