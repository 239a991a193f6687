"""
Shared utilities for the fee splitter API.

Authentication decorator, payload validation, pagination bounds and the
mapping from splitter errors to HTTP responses.
"""

import os
import secrets
from functools import wraps
from typing import Any

from flask import jsonify, request

from allocation_registry import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT
from fee_split_errors import ErrorCategory, FeeSplitError

# ============================================================
# Security Configuration
# ============================================================

API_KEY = os.getenv("FEESPLIT_API_KEY", None)
# SECURITY: Default to requiring authentication
API_KEY_REQUIRED = os.getenv("FEESPLIT_REQUIRE_AUTH", "true").lower() == "true"

ERROR_STATUS = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.AUTHORIZATION: 403,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.CONSISTENCY: 409,
}


# ============================================================
# Validation Utilities
# ============================================================

def validate_pagination_params(limit: Any) -> int:
    """Bound a page size to ``[1, MAX_PAGE_LIMIT]``; non-numeric input falls back to the default."""
    try:
        value = int(limit) if limit not in (None, "") else DEFAULT_PAGE_LIMIT
    except (TypeError, ValueError):
        value = DEFAULT_PAGE_LIMIT
    return max(1, min(value, MAX_PAGE_LIMIT))


def validate_json_schema(
    data: Any,
    required_fields: dict[str, type | tuple[type, ...]],
    optional_fields: dict[str, type | tuple[type, ...]] | None = None,
) -> tuple[bool, str | None]:
    """
    Validate a JSON payload against a simple field->type schema.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not isinstance(data, dict):
        return False, "Request body must be a JSON object"

    for field_name, expected_type in required_fields.items():
        if field_name not in data:
            return False, f"Missing required field: {field_name}"
        if not isinstance(data[field_name], expected_type):
            return False, f"Field '{field_name}' has the wrong type"

    for field_name, expected_type in (optional_fields or {}).items():
        value = data.get(field_name)
        if value is not None and not isinstance(value, expected_type):
            return False, f"Field '{field_name}' has the wrong type"

    return True, None


def json_body() -> dict[str, Any]:
    """Request body as a dict (empty if missing or not JSON)."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def error_response(error: FeeSplitError):
    """Translate a splitter error into a JSON response with its HTTP status."""
    return jsonify(error.to_dict()), ERROR_STATUS[error.category]


def bad_request(message: str):
    return jsonify({"error": "BadRequest", "category": "validation", "message": message}), 400


# ============================================================
# Authentication Decorator
# ============================================================

def require_api_key(f):
    """Decorator to require the X-API-Key header on mutating endpoints."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not API_KEY_REQUIRED:
            return f(*args, **kwargs)

        provided_key = request.headers.get("X-API-Key")
        if not provided_key:
            return jsonify({
                "error": "API key required",
                "hint": "Provide API key in X-API-Key header",
            }), 401

        if not API_KEY:
            return jsonify({
                "error": "Server API key not configured",
                "hint": "Set FEESPLIT_API_KEY environment variable",
            }), 503

        if not secrets.compare_digest(provided_key, API_KEY):
            return jsonify({"error": "Invalid API key"}), 403

        return f(*args, **kwargs)
    return decorated_function
