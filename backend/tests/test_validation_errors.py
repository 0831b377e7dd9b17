"""
Unit Tests for 422 response bodies

Run with: pytest tests/test_validation_errors.py -v
"""

import uuid

import pytest
from fastapi import HTTPException

from reconciliation.errors import RunValidationError
from utils.validation_errors import raise_run_validation_error, require_uuid, run_validation_body


class TestRunValidationBody:
    """Test bodies built from RunValidationError."""

    def test_details_are_carried(self):
        error = RunValidationError("Extract lines do not belong to this run", {"extract_line_ids": ["e9"]})

        assert run_validation_body(error) == {
            "error": "validation_error",
            "message": "Extract lines do not belong to this run",
            "details": {"extract_line_ids": ["e9"]},
        }

    def test_details_omitted_when_empty(self):
        assert "details" not in run_validation_body(RunValidationError("Concept is required"))

    def test_raises_422(self):
        with pytest.raises(HTTPException) as exc_info:
            raise_run_validation_error(RunValidationError("Invalid cut date", {"cut_date": "31/02"}))

        assert exc_info.value.status_code == 422
        assert exc_info.value.detail["details"] == {"cut_date": "31/02"}


class TestRequireUuid:
    """Test path id validation."""

    def test_valid_uuid_passes_through(self):
        run_id = str(uuid.uuid4())
        assert require_uuid(run_id, "run_id") == run_id

    def test_malformed_id_rejected(self):
        with pytest.raises(HTTPException) as exc_info:
            require_uuid("run-1", "run_id")

        assert exc_info.value.status_code == 422
        assert exc_info.value.detail["error"] == "invalid_parameter"
        assert exc_info.value.detail["parameter"] == "run_id"
        assert exc_info.value.detail["received_value"] == "run-1"
