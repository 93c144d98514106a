# Overview: Shared response helpers for API blueprints.

from __future__ import annotations

from flask import current_app, jsonify, request

from ..errors import ValidationError, WorkflowError
from ..services.concurrency import rollback_session
from ..validation import parse_date_param, parse_int


def error_response(exc: WorkflowError):
    rollback_session()
    return jsonify(exc.to_dict()), exc.status_code


def unexpected_error(message: str):
    rollback_session()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def arg_int(name: str) -> int | None:
    return parse_int(request.args.get(name), name)


def arg_upper(name: str) -> str | None:
    value = request.args.get(name)
    return value.strip().upper() if value and value.strip() else None


def arg_date(name: str):
    return parse_date_param(request.args.get(name), name)
