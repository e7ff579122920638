from __future__ import annotations

from typing import Any

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from apps.assessments.exceptions import AssessmentLifecycleError


def _first_error_message(data: Any) -> str | None:
    """
    Pull a human-friendly message out of DRF's ValidationError shapes.

    Common shapes:
    - {"field": ["msg"]} / {"field": "msg"}
    - {"non_field_errors": ["msg"]}
    - ["msg"]
    """
    if data is None:
        return None

    if isinstance(data, list) and data:
        v = data[0]
        return v if isinstance(v, str) else str(v)

    if isinstance(data, dict) and data:
        nfe = data.get("non_field_errors")
        if isinstance(nfe, list) and nfe:
            return str(nfe[0])

        for v in data.values():
            if isinstance(v, list) and v:
                return str(v[0])
            if isinstance(v, str) and v:
                return v
            if isinstance(v, dict):
                nested = _first_error_message(v)
                if nested:
                    return nested

    return None


def lifecycle_error_response(exc: AssessmentLifecycleError) -> Response:
    """Typed body the frontend can branch on (`code` + machine-readable `reason`)."""
    return Response(
        {"detail": str(exc), "code": exc.code, "reason": exc.reason},
        status=exc.status_code,
    )


def api_exception_handler(exc, context):
    """
    Turn session lifecycle rule violations into typed 4xx responses and make
    400 responses consistently include a top-level `detail` message.

    Anything else (database down, programming errors) is left to propagate.
    """
    if isinstance(exc, AssessmentLifecycleError):
        return lifecycle_error_response(exc)

    response = exception_handler(exc, context)
    if response is None:
        return None

    if response.status_code == status.HTTP_400_BAD_REQUEST:
        data = response.data
        if isinstance(data, dict) and "detail" not in data:
            msg = _first_error_message(data)
            if msg:
                response.data["detail"] = msg
        elif isinstance(data, list):
            msg = _first_error_message(data)
            if msg:
                response.data = {"detail": msg, "errors": data}

    return response
