"""
422 bodies for reconciliation requests.

Two kinds reach the client:
- invalid_parameter: a path id that is not a UUID, rejected before any lookup
- validation_error: a RunValidationError raised by the engine or a service,
  with the offending line ids or amounts under "details"

{
    "error": "validation_error",
    "message": "Extract lines do not belong to this run",
    "details": {"extract_line_ids": ["..."]}
}
"""

import uuid
from typing import NoReturn

from fastapi import HTTPException, status

from reconciliation.errors import RunValidationError


def run_validation_body(error: RunValidationError) -> dict:
    body = {"error": "validation_error", "message": error.message}
    if error.details:
        body["details"] = error.details
    return body


def raise_run_validation_error(error: RunValidationError) -> NoReturn:
    raise HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=run_validation_body(error),
    )


def require_uuid(value: str, parameter: str) -> str:
    """
    Reject a path id that cannot name a run, line, category or rule.

    Ids are UUID strings; anything else would only ever produce a 404.
    """
    try:
        uuid.UUID(value)
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "error": "invalid_parameter",
                "parameter": parameter,
                "message": f"{parameter} must be a valid UUID",
                "received_value": str(value)[:100],
            },
        )
    return value
