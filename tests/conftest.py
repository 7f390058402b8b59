"""Root conftest for test suite.

Process-wide singletons (cached settings, the LLM client and the database
circuit breaker) are reset around every test so environment changes made
by one test never leak into the next.
"""

import pytest

from edujobs.config import get_settings
from edujobs.core.resilience import reset_circuit
from edujobs.services.llm_factory import reset_llm


@pytest.fixture(autouse=True)
def reset_singletons():
    get_settings.cache_clear()
    reset_llm()
    reset_circuit()
    yield
    get_settings.cache_clear()
    reset_llm()
    reset_circuit()
