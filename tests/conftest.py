"""
Shared test fixtures and configuration.
"""

import pytest
import os

# Set test environment variables before importing app modules
os.environ.setdefault("URLBAR_LLM_DEBUG", "true")
os.environ.setdefault("URLBAR_LLM_LOCAL_STORAGE_PATH", "/tmp/urlbar_llm_test_data")
os.environ.setdefault("URLBAR_LLM_LOG_FILE_ENABLED", "false")
os.environ.setdefault("URLBAR_LLM_LOG_API_REQUESTS", "false")


@pytest.fixture
def anyio_backend():
    return "asyncio"
