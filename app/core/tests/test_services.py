"""
Tests for ServiceResult, BaseService and the application error hierarchy.
"""

from __future__ import annotations

import logging

import pytest
from django.contrib.auth import get_user_model

from core.exceptions import ConflictError, NotFoundError, ValidationError
from core.services import BaseService, ServiceResult


User = get_user_model()


class SampleService(BaseService):
    pass


class TestServiceResult:
    def test_success(self):
        result = ServiceResult.success({"id": 1})

        assert result.success
        assert bool(result)
        assert result.data == {"id": 1}
        assert result.status_code == 200
        assert result.to_response() == {"success": True, "data": {"id": 1}}

    def test_failure(self):
        result = ServiceResult.failure(
            "Bad amount",
            error_code="INVALID_AMOUNT",
            errors={"amount": "-1"},
        )

        assert not result
        assert result.status_code == 400
        assert result.to_response() == {
            "success": False,
            "error": "Bad amount",
            "error_code": "INVALID_AMOUNT",
            "errors": {"amount": "-1"},
        }

    def test_failure_without_code_omits_keys(self):
        assert ServiceResult.failure("Nope").to_response() == {
            "success": False,
            "error": "Nope",
        }

    def test_from_application_error(self):
        exc = ConflictError(
            "Order already paid",
            error_code="INVALID_ORDER_STATE",
            details={"status": "paid"},
        )

        result = ServiceResult.from_exception(exc)

        assert result.error == "Order already paid"
        assert result.error_code == "INVALID_ORDER_STATE"
        assert result.errors == {"status": "paid"}
        assert result.status_code == 409

    def test_from_application_error_without_details(self):
        result = ServiceResult.from_exception(NotFoundError("Missing"))

        assert result.error_code == "NOT_FOUND"
        assert result.errors is None
        assert result.status_code == 404

    def test_from_unexpected_exception(self):
        result = ServiceResult.from_exception(KeyError("x"))

        assert result.error_code == "KEYERROR"
        assert result.status_code == 500

    def test_code_override(self):
        result = ServiceResult.from_exception(ValidationError("x"), error_code="CUSTOM")

        assert result.error_code == "CUSTOM"


class TestBaseService:
    def test_logger_named_after_service(self):
        assert SampleService.get_logger().name == f"{__name__}.SampleService"

    def test_handle_exception_hides_details(self, caplog):
        with caplog.at_level(logging.ERROR):
            result = SampleService.handle_exception(RuntimeError("db password wrong"), "create")

        assert result.error_code == "INTERNAL_ERROR"
        assert result.status_code == 500
        assert "password" not in result.error
        assert "create: db password wrong" in caplog.text

    def test_validate_required(self):
        result = SampleService.validate_required(reason="  ", amount=None, notes="ok")

        assert result.error_code == "VALIDATION_ERROR"
        assert set(result.errors) == {"reason", "amount"}

    def test_validate_required_passes(self):
        assert SampleService.validate_required(reason="Late") is None

    @pytest.mark.django_db
    def test_atomic_rolls_back(self):
        with pytest.raises(RuntimeError):
            with SampleService.atomic():
                User.objects.create(username="ghost")
                raise RuntimeError("abort")

        assert not User.objects.filter(username="ghost").exists()


class TestApplicationErrors:
    def test_to_dict(self):
        exc = ValidationError("Bad input", details={"quantity": ["Must be positive"]})

        assert exc.to_dict() == {
            "error": "Bad input",
            "error_code": "VALIDATION_ERROR",
            "details": {"quantity": ["Must be positive"]},
        }

    def test_str(self):
        assert str(NotFoundError("Gone", error_code="ORDER_NOT_FOUND")) == (
            "[ORDER_NOT_FOUND] Gone"
        )
