import os

import pytest

from chatbridge.kernel.engine import ChatEngine
from tests.kernel.mocks import EventRecorder, MockChatBridge, valid_configuration


@pytest.fixture(autouse=True)
def isolated_app_home(tmp_path, monkeypatch):
    """
    Point the application data directory at a temp dir and drop any
    CHATBRIDGE_* settings from the developer's environment.
    """
    for key in list(os.environ):
        if key.startswith("CHATBRIDGE_"):
            monkeypatch.delenv(key, raising=False)
    home = tmp_path / "chatbridge-home"
    monkeypatch.setenv("CHATBRIDGE_HOME", str(home))
    yield home


@pytest.fixture
def mock_bridge():
    return MockChatBridge()


@pytest.fixture
def engine(mock_bridge):
    return ChatEngine(mock_bridge)


@pytest.fixture
def recorder(engine):
    return EventRecorder(engine)


@pytest.fixture
def valid_config():
    return valid_configuration()
