import pytest
from loguru import logger

from builders import app_manifest, manifest, sample_table


@pytest.fixture
def manifest_bytes():
    return manifest()


@pytest.fixture
def app_manifest_bytes():
    return app_manifest()


@pytest.fixture
def table_bytes():
    return sample_table()


@pytest.fixture
def log_messages():
    """Collect the messages logged by the package while the test runs"""
    messages = []
    handler_id = logger.add(messages.append, format="{level}:{message}", level="DEBUG")
    logger.enable("apkres")
    yield messages
    logger.disable("apkres")
    logger.remove(handler_id)
