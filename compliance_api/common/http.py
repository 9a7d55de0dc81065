# compliance_api/common/http.py
"""
JSON envelopes shared by every blueprint.

  success: {"success": true,  "data": ..., "meta": {...}}
  failure: {"success": false, "error": {"message", "code"?, "detail"?, "errors"?}}
"""
from flask import jsonify


def ok(data=None, status=200, **meta):
    body = {"success": True, "data": data}
    if meta:
        body["meta"] = meta
    return jsonify(body), status


def fail(message="Bad Request", status=400, code=None, detail=None, errors=None):
    error = {"message": message}
    for key, value in (("code", code), ("detail", detail), ("errors", errors)):
        if value:
            error[key] = value
    return jsonify({"success": False, "error": error}), status


def iso(value):
    """date / datetime -> ISO string; None stays None."""
    return None if value is None else value.isoformat()
