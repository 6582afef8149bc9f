import logging
from contextlib import AsyncExitStack

import pytest

from relaydrop.avails import const
from relaydrop.managers import logmanager


@pytest.fixture
def isolated_logging(monkeypatch, tmp_path):
    monkeypatch.setattr(const, "PATH_LOG", tmp_path / "logs")
    names = ("relaydrop", "websockets")
    saved = {name: (logging.getLogger(name).handlers[:], logging.getLogger(name).propagate) for name in names}
    yield tmp_path / "logs"
    for name, (handlers, propagate) in saved.items():
        logger = logging.getLogger(name)
        logger.handlers[:] = handlers
        logger.propagate = propagate
        logger.setLevel(logging.NOTSET)


@pytest.mark.asyncio
async def test_records_reach_the_log_file(isolated_logging):
    async with AsyncExitStack() as exit_stack:
        listener = await logmanager.initiate(exit_stack, console_level="error")
        assert listener._thread is not None  # noqa
        logging.getLogger("relaydrop.core.peers").info("paired with receiver r-1")

    assert listener._thread is None  # noqa
    log_file = isolated_logging / "relaydrop.log"
    assert "paired with receiver r-1" in log_file.read_text()
    assert logging.getHandlerByName("stderr").level == logging.ERROR
