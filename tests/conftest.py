"""Shared pytest fixtures for the GT06 parser node."""
import json

import pytest

from config import Config
from gt06_codec.packet_builder import Gt06PacketBuilder
from gt06_parser.frame_dispatcher import FrameDispatcher, SessionState

TEST_IMEI = "356860820045174"


@pytest.fixture(autouse=True)
def reset_config():
    """Drop any test config so the next test starts from the node's config.json."""
    yield
    Config._config_file = None
    Config._config = None


@pytest.fixture
def write_config(tmp_path):
    """Write a config.json into tmp_path, load it, and return the merged configuration."""
    def _write(settings=None):
        path = tmp_path / "config.json"
        path.write_text(json.dumps(settings or {}), encoding="utf-8")
        Config.load(str(path))
        return Config.reload()
    return _write


@pytest.fixture
def builder() -> Gt06PacketBuilder:
    """Device-side packet builder with a fresh serial counter (first frame has serial 1)."""
    return Gt06PacketBuilder(TEST_IMEI)


@pytest.fixture
def dispatcher() -> FrameDispatcher:
    return FrameDispatcher()


@pytest.fixture
def state() -> SessionState:
    return SessionState(connection_id="127.0.0.1:40000")
