# compliance_api/common/payload.py
from flask import request

from compliance_api.common.errors import APIError

_TRUE = ("true", "1", "yes")
_FALSE = ("false", "0", "no")


def json_body() -> dict:
    """The JSON object of the request; a missing body is {}."""
    data = request.get_json(silent=True, force=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise APIError("INVALID_BODY", "request body must be a JSON object", 422)
    return data


def text(data: dict, key: str) -> str:
    """Stripped string field; missing or null is ''. Anything else is a 422."""
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise APIError("INVALID_FIELD", f"{key} must be a string", 422)
    return value.strip()


def parse_flag(value):
    """true/false from a JSON bool or a query-string spelling; None when unrecognised."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        v = value.strip().lower()
        if v in _TRUE:
            return True
        if v in _FALSE:
            return False
    return None


def flag(data: dict, key: str, default: bool) -> bool:
    if key not in data:
        return default
    value = parse_flag(data.get(key))
    if value is None:
        raise APIError("INVALID_FIELD", f"{key} must be true or false", 422)
    return value
