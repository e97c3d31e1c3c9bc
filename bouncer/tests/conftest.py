"""
Pytest configuration for bouncer tests.

Why: Force AnyIO to use the asyncio backend and give every test fresh
telemetry so counter assertions do not leak between tests.
"""
import pytest

from bouncer import telemetry


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_telemetry():
    telemetry.reset_for_tests()
    yield
    telemetry.reset_for_tests()
