import json
from typing import Any

from pydantic_core import to_jsonable_python


def json_serializer(obj: Any, **kwargs: Any) -> str:
    """`json.dumps` that also understands Decimal amounts, datetimes,
    enums and pydantic models. Used for JSON columns and JSON log lines.
    """
    kwargs.setdefault("default", to_jsonable_python)
    return json.dumps(obj, **kwargs)
