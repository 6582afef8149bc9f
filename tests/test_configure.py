import configparser

import pytest

from relaydrop.avails import const
from relaydrop.configurations import configure

_CONSTANTS = (
    "RELAY_URL",
    "LINK_BASE",
    "MAX_RECONNECT_ATTEMPTS",
    "RECONNECT_DELAY",
    "RECONNECT_BACKOFF_FACTOR",
    "RECONNECT_MAX_DELAY",
    "KEEPALIVE_INTERVAL",
    "RECEIVER_READY_RESEND_DELAY",
    "CHUNK_SIZE",
    "COMPLETION_THRESHOLD",
    "STALL_TIMEOUT",
    "ABORT_ON_STALL",
    "ACK_WAIT_TIMEOUT",
    "PATH_CURRENT",
    "PATH_LOG",
    "PATH_CONFIG",
    "PATH_CONFIG_FILE",
    "PATH_DOWNLOAD",
)


@pytest.fixture(autouse=True)
def restore_constants(monkeypatch):
    for name in _CONSTANTS:
        monkeypatch.setattr(const, name, getattr(const, name))


def _config(text):
    config_map = configparser.ConfigParser()
    config_map.read_string(text)
    return config_map


@pytest.mark.asyncio
async def test_missing_file_is_written_with_defaults(tmp_path):
    path = tmp_path / "configs" / "default_config.ini"
    config_map = await configure.load_configs(path)

    assert path.exists()
    assert config_map.get("RELAY", "url") == "ws://localhost:3000/ws"
    assert config_map.getint("TRANSFER", "chunk_size") == 64 * 1024
    assert const.CHUNK_SIZE == 64 * 1024
    assert const.COMPLETION_THRESHOLD == 1.0
    assert const.ABORT_ON_STALL is False


@pytest.mark.asyncio
async def test_values_from_file_override_constants(tmp_path):
    path = tmp_path / "relay.ini"
    path.write_text(
        "[RELAY]\n"
        "url = wss://relay.example/ws\n"
        "[CONNECTION]\n"
        "max_reconnect_attempts = 2\n"
        "reconnect_delay = 0.5\n"
        "[TRANSFER]\n"
        "chunk_size = 1024\n"
        "completion_threshold = 0.99\n"
        "abort_on_stall = yes\n"
    )
    await configure.load_configs(path)

    assert const.RELAY_URL == "wss://relay.example/ws"
    assert const.MAX_RECONNECT_ATTEMPTS == 2
    assert const.RECONNECT_DELAY == 0.5
    assert const.CHUNK_SIZE == 1024
    assert const.COMPLETION_THRESHOLD == 0.99
    assert const.ABORT_ON_STALL is True
    assert const.KEEPALIVE_INTERVAL == 15.0


@pytest.mark.parametrize("text", [
    "[TRANSFER]\nchunk_size = 0\n",
    "[TRANSFER]\ncompletion_threshold = 0\n",
    "[TRANSFER]\ncompletion_threshold = 1.5\n",
    "[CONNECTION]\nreconnect_delay = -1\n",
    "[CONNECTION]\nmax_reconnect_attempts = -3\n",
    "[CONNECTION]\nreconnect_backoff_factor = 0.5\n",
])
def test_nonsense_values_are_rejected(text):
    with pytest.raises(ValueError):
        configure.set_constants(_config(text))


def test_empty_config_keeps_defaults():
    before = const.CHUNK_SIZE, const.RELAY_URL
    assert configure.set_constants(_config("")) is True
    assert (const.CHUNK_SIZE, const.RELAY_URL) == before


def test_set_paths(tmp_path):
    configure.set_paths(tmp_path)
    assert const.PATH_LOG == tmp_path / "logs"
    assert const.PATH_CONFIG_FILE == tmp_path / "configs" / "default_config.ini"
    assert (tmp_path / "logs").is_dir()
    assert const.PATH_DOWNLOAD.name == "relaydrop"
