"""
Root conftest for all tests.

Keeps process-wide state from leaking between tests: cached settings and
the trace ID context variable.
"""

import pytest

from config.settings import get_settings
from libs.common.logging import clear_trace_id


@pytest.fixture(autouse=True)
def _reset_process_state():
    get_settings.cache_clear()
    clear_trace_id()
    yield
    get_settings.cache_clear()
    clear_trace_id()
