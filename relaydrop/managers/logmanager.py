import asyncio
import json
import logging
import logging.config
from pathlib import Path

from relaydrop.avails import const

QUEUE_HANDLER = "queue_handler"


def _read_log_config():
    with open(const.PATH_LOG_CONFIG) as fp:
        log_config = json.load(fp)
    Path(const.PATH_LOG).mkdir(parents=True, exist_ok=True)
    return log_config


def _stop_listener(listener):
    logging.getLogger("relaydrop").debug("closing logging")
    listener.stop()
    for handler in listener.handlers:
        handler.close()


async def initiate(exit_stack, console_level=None):
    """Applies ``log_config.json`` and starts the listener behind ``queue_handler``

    Args:
        exit_stack(AsyncExitStack): the queue listener is stopped when this stack unwinds
        console_level(str): overrides the level of the ``stderr`` handler
    """
    log_config = await asyncio.to_thread(_read_log_config)

    handlers = log_config["handlers"]
    handlers["file"]["filename"] = str(Path(const.PATH_LOG, handlers["file"]["filename"]))
    if console_level:
        handlers["stderr"]["level"] = console_level.upper()

    logging.config.dictConfig(log_config)

    listener = logging.getHandlerByName(QUEUE_HANDLER).listener
    listener.start()
    exit_stack.callback(_stop_listener, listener)
    return listener
