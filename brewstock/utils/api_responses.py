"""JSON envelope shared by the billing endpoints.

Every response carries ``success`` and ``message``. Successful responses add
``data``; failures add ``errors`` keyed by field name.
"""
from typing import Any, Dict, List, Optional

from flask import jsonify, request


def _envelope(success: bool, message: str, status_code: int, **body):
    return jsonify({'success': success, 'message': message, **body}), status_code


class APIResponse:

    @staticmethod
    def success(data: Any = None, message: str = "Success", status_code: int = 200):
        return _envelope(True, message, status_code, data=data)

    @staticmethod
    def error(message: str, errors: Optional[Dict] = None, status_code: int = 400):
        return _envelope(False, message, status_code, errors=errors or {})

    @staticmethod
    def validation_error(errors: Dict[str, List[str]], message: str = "Validation failed"):
        return APIResponse.error(message, errors, status_code=422)

    @staticmethod
    def not_found(resource: str = "Resource"):
        return APIResponse.error(f"{resource} not found", status_code=404)

    @staticmethod
    def forbidden(message: str = "Access denied"):
        return APIResponse.error(message, status_code=403)

    @staticmethod
    def handle_request_content() -> Dict[str, Any]:
        """Read a JSON or form body; gateways and cron callers send either."""
        if request.is_json:
            return request.get_json(silent=True) or {}
        if request.form:
            return request.form.to_dict()
        return {}
