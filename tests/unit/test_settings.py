"""Settings validation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from bloom.config import Settings


def test_receipt_wait_must_end_before_gateway_timeout():
    with pytest.raises(ValidationError):
        Settings(gateway_timeout_seconds=10, gateway_receipt_timeout_seconds=10)


def test_defaults_leave_room_for_the_receipt_wait():
    settings = Settings()
    assert settings.gateway_receipt_timeout_seconds < settings.gateway_timeout_seconds
