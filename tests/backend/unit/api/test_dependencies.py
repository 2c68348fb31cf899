"""Tests for route dependencies."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import Mock, patch

import pytest

from api.dependencies import get_app_settings, get_handler_registry, get_tool_client
from api.middleware.exception_handlers import ConfigurationError
from models.error_models import ErrorCode


def _request(**state: object) -> Mock:
    request = Mock()
    request.app.state = SimpleNamespace(**state)
    return request


def test_get_app_settings() -> None:
    mock_settings = Mock()
    with patch("api.dependencies.get_settings", return_value=mock_settings):
        assert get_app_settings() is mock_settings


def test_state_objects_returned() -> None:
    registry, tool_client = Mock(), Mock()
    request = _request(handler_registry=registry, tool_client=tool_client)

    assert get_handler_registry(request) is registry
    assert get_tool_client(request) is tool_client


@pytest.mark.parametrize("dependency", [get_handler_registry, get_tool_client])
def test_missing_state_is_configuration_error(dependency) -> None:
    with pytest.raises(ConfigurationError) as exc_info:
        dependency(_request())

    assert exc_info.value.code == ErrorCode.INTERNAL_CONFIGURATION_ERROR
    assert "Service not initialized" in exc_info.value.message
