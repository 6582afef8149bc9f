import asyncio
import logging
import math
from typing import Callable, Optional
from urllib.parse import parse_qs, urlencode, urlsplit
from uuid import uuid4

from relaydrop.avails import constants as const

_logger = logging.getLogger(__name__)


def get_unique_id():
    return str(uuid4())


def get_timeouts(initial=None, factor=None, max_retries=None, max_value=None):
    """
    Generate exponential backoff timeout values.

    Args:
        initial (float): The initial timeout value in seconds. Defaults to ``const.RECONNECT_DELAY``.
        factor (int): The factor by which the timeout value is multiplied at each step.
            Defaults to ``const.RECONNECT_BACKOFF_FACTOR``.
        max_retries (int): The maximum number of values to yield. Defaults to ``const.MAX_RECONNECT_ATTEMPTS``.
        max_value (float): The maximum timeout value in seconds. Defaults to ``const.RECONNECT_MAX_DELAY``.

    Yields:
        float: The next timeout value in the sequence, capped by max_value.

    Example:
        >>> list(get_timeouts(initial=1, factor=3, max_retries=4, max_value=10))
        [1, 3, 9, 10]
    """
    current = const.RECONNECT_DELAY if initial is None else initial
    factor = const.RECONNECT_BACKOFF_FACTOR if factor is None else factor
    max_retries = const.MAX_RECONNECT_ATTEMPTS if max_retries is None else max_retries
    max_value = const.RECONNECT_MAX_DELAY if max_value is None else max_value

    for _ in range(max_retries):
        yield min(current, max_value)
        current *= factor


def progress_percent(done, total):
    """``floor(100 * done / total)`` capped to [0, 100]"""
    if total <= 0:
        return 0
    return max(0, min(100, math.floor(100 * done / total)))


def build_share_link(sender_id, base=None):
    base = base or const.LINK_BASE
    return f"{base}?{urlencode({'id': sender_id})}"


def parse_share_link(link_or_id: str) -> str:
    """Extracts sender id out of a share link, a bare id is returned as is

    Raises:
        ValueError: if a link is passed without an ``id`` parameter
    """
    link_or_id = link_or_id.strip()
    parts = urlsplit(link_or_id)
    if not parts.scheme and not parts.query:
        if not link_or_id:
            raise ValueError("empty sender id")
        return link_or_id

    ids = parse_qs(parts.query).get('id')
    if not ids or not ids[0]:
        raise ValueError(f"no sender id found in link: {link_or_id}")
    return ids[0]


def shorten_id(some_id, length=8):
    some_id = str(some_id)
    return some_id if len(some_id) <= length else f"{some_id[:length]}.."


class StallTimer:
    """Watchdog re-armed on every chunk

    Logs a warning when no progress has been reported for ``timeout`` seconds,
    calls ``on_stall`` (if provided) at the same point.

    Attributes:
        timeout(float): seconds of silence that count as a stall
        on_stall(Callable): called with no arguments once the timer fires
        stalled(bool): True once the timer has fired since the last ``reset``
    """

    __slots__ = 'timeout', 'on_stall', 'name', 'stalled', '_handle'

    def __init__(self, timeout=None, on_stall: Optional[Callable[[], None]] = None, name=""):
        self.timeout = const.STALL_TIMEOUT if timeout is None else timeout
        self.on_stall = on_stall
        self.name = name
        self.stalled = False
        self._handle: Optional[asyncio.TimerHandle] = None

    def reset(self):
        self.cancel()
        self.stalled = False
        if self.timeout and self.timeout > 0:
            self._handle = asyncio.get_running_loop().call_later(self.timeout, self._fire)

    def cancel(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    @property
    def armed(self):
        return self._handle is not None

    def _fire(self):
        self._handle = None
        self.stalled = True
        _logger.warning(f"{self.name} no chunk for {self.timeout}s, transfer looks stalled")
        if self.on_stall:
            self.on_stall()
