"""Relay socket ownership

:class: `ConnectionManager` keeps exactly one websocket to the relay per session,
turns everything that happens on it into events (see :mod: `relaydrop.avails.events`)
and reconnects with bounded exponential backoff when the socket drops abnormally.

"""

import asyncio
import functools
import logging

import websockets
from websockets.asyncio.client import connect as _ws_connect
from websockets.exceptions import ConnectionClosed

from relaydrop.avails import InvalidPacket, InvalidStateError, NotConnected, Ping, WireMessage, const, unpack_frame, use
from relaydrop.avails.events import Closed, Exhausted, Inbound, Opened, Payload

_logger = logging.getLogger(__name__)

CONNECT_ERRORS = (OSError, TimeoutError, websockets.WebSocketException)


def default_connector(open_timeout=None, max_size=None):
    return functools.partial(
        _ws_connect,
        open_timeout=const.OPEN_TIMEOUT if open_timeout is None else open_timeout,
        max_size=const.MAX_FRAME_SIZE if max_size is None else max_size,
    )


class ConnectionManager:
    """Owns the relay socket of one :class: `Session`

    Events are pushed into :attr: `events` in the order they happen,
    ``Opened`` always comes before any frame read on that socket

    Args:
        session(Session): the session this socket belongs to, its ``reconnect_attempts`` is kept here
        url(str): relay websocket url
        connector(Callable[[str], Awaitable]): opens a socket, defaults to ``websockets`` client
        max_attempts(int): reconnect attempts before giving up with ``Exhausted``
        reconnect_delay(float): delay before first reconnect attempt
        backoff_factor(float): multiplier applied to delay after every failed attempt
        max_delay(float): upper bound of any single delay
        keepalive_interval(float): seconds between ``ping`` frames, 0 disables them
    """

    def __init__(
            self,
            session,
            url=None,
            *,
            connector=None,
            max_attempts=None,
            reconnect_delay=None,
            backoff_factor=None,
            max_delay=None,
            keepalive_interval=None,
            open_timeout=None,
    ):
        self.session = session
        self.url = url or const.RELAY_URL
        self.connector = connector or default_connector(open_timeout)
        self.max_attempts = const.MAX_RECONNECT_ATTEMPTS if max_attempts is None else max_attempts
        self.reconnect_delay = const.RECONNECT_DELAY if reconnect_delay is None else reconnect_delay
        self.backoff_factor = const.RECONNECT_BACKOFF_FACTOR if backoff_factor is None else backoff_factor
        self.max_delay = const.RECONNECT_MAX_DELAY if max_delay is None else max_delay
        self.keepalive_interval = const.KEEPALIVE_INTERVAL if keepalive_interval is None else keepalive_interval

        self.events: asyncio.Queue = asyncio.Queue()
        self._socket = None
        self._closing = False
        self._opened_once = False
        self._reader_task = None
        self._keepalive_task = None
        self._reconnect_task = None
        self._scheduled = set()

    @property
    def is_open(self):
        return self._socket is not None

    async def open(self):
        """Opens the first socket

        On failure the bounded reconnect loop takes over, the outcome arrives as
        ``Opened`` or ``Exhausted`` on :attr: `events`

        Returns:
            bool: True if the socket is open on return
        """
        if self._closing:
            raise InvalidStateError(f"{self._log_prefix} connection manager already closed")
        if self.is_open:
            return True

        try:
            await self._connect()
        except CONNECT_ERRORS as e:
            _logger.warning(f"{self._log_prefix} could not reach relay at {self.url}: {e!r}")
            self._connection_lost(None, None)
            return False
        return True

    async def _connect(self):
        reconnect = self._opened_once
        socket = await self.connector(self.url)
        self._socket = socket
        self._opened_once = True
        self.session.reconnect_attempts = 0
        _logger.info(f"{self._log_prefix} connected to relay {self.url} ({reconnect=})")

        self._emit(Opened(reconnect))
        self._reader_task = asyncio.create_task(self._read_loop(socket), name=f"relay-reader{self._log_prefix}")
        if self.keepalive_interval and self.keepalive_interval > 0:
            self._keepalive_task = asyncio.create_task(self._keepalive(), name=f"relay-keepalive{self._log_prefix}")

    async def _read_loop(self, socket):
        try:
            async for raw in socket:
                try:
                    frame = unpack_frame(raw)
                except InvalidPacket as ip:
                    _logger.warning(f"{self._log_prefix} discarding frame: {ip}")
                    continue

                if isinstance(frame, bytes):
                    self._emit(Payload(frame))
                else:
                    self._emit(Inbound(frame))
        except ConnectionClosed as cc:
            _logger.debug(f"{self._log_prefix} relay socket closed: {cc!r}")

        self._connection_lost(socket, socket.close_code)

    def _connection_lost(self, socket, code):
        if socket is not self._socket:
            return
        self._socket = None
        self._cancel(self._keepalive_task)
        self._keepalive_task = None

        will_retry = (
                code != const.CLOSE_NORMAL
                and not self._closing
                and not self.session.is_terminal
                and self.max_attempts > 0
        )
        _logger.info(f"{self._log_prefix} relay connection lost ({code=}, {will_retry=})")
        self._emit(Closed(code, will_retry))

        if will_retry:
            self._reconnect_task = asyncio.create_task(self._reconnect(), name=f"relay-reconnect{self._log_prefix}")
        elif not self._closing and not self.session.is_terminal and code != const.CLOSE_NORMAL:
            self._emit(Exhausted(self.session.reconnect_attempts))

    async def _reconnect(self):
        timeouts = use.get_timeouts(
            initial=self.reconnect_delay,
            factor=self.backoff_factor,
            max_retries=self.max_attempts,
            max_value=self.max_delay,
        )
        for delay in timeouts:
            if self._closing or self.session.is_terminal:
                return

            self.session.reconnect_attempts += 1
            _logger.info(
                f"{self._log_prefix} reconnecting in {delay}s"
                f" (attempt {self.session.reconnect_attempts}/{self.max_attempts})"
            )
            await asyncio.sleep(delay)
            if self._closing or self.session.is_terminal:
                return

            try:
                await self._connect()
            except CONNECT_ERRORS as e:
                _logger.warning(f"{self._log_prefix} reconnect attempt failed: {e!r}")
                continue
            return

        _logger.error(f"{self._log_prefix} giving up after {self.session.reconnect_attempts} reconnect attempts")
        self._emit(Exhausted(self.session.reconnect_attempts))

    async def _keepalive(self):
        while True:
            await asyncio.sleep(self.keepalive_interval)
            try:
                await self.send(Ping())
            except NotConnected:
                return

    async def send(self, frame):
        """Writes one frame, messages go out as text frames and bytes as binary frames

        Raises:
            NotConnected: if the socket is not open or closes while writing
        """
        socket = self._socket
        if socket is None:
            raise NotConnected(f"{self._log_prefix} not connected to relay")

        data = frame.dump() if isinstance(frame, WireMessage) else frame
        try:
            await socket.send(data)
        except ConnectionClosed as cc:
            raise NotConnected(f"{self._log_prefix} relay socket closed while sending") from cc

    def schedule(self, delay, frame):
        """Sends ``frame`` after ``delay`` seconds unless the manager is closed first"""
        task = asyncio.create_task(self._send_later(delay, frame))
        self._scheduled.add(task)
        task.add_done_callback(self._scheduled.discard)
        return task

    async def _send_later(self, delay, frame):
        await asyncio.sleep(delay)
        try:
            await self.send(frame)
        except NotConnected:
            _logger.debug(f"{self._log_prefix} dropping delayed {frame}, socket is gone")

    async def drain(self):
        """Waits until every frame handed to :meth: `schedule` went out or was dropped"""
        if self._scheduled:
            await asyncio.gather(*self._scheduled, return_exceptions=True)

    async def get_event(self):
        return await self.events.get()

    def _emit(self, event):
        self.events.put_nowait(event)

    @staticmethod
    def _cancel(task):
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            return task

    async def close(self, code=const.CLOSE_NORMAL, reason=""):
        """Deliberate close, no reconnect is attempted after this and pending timers are cancelled"""
        if self._closing:
            return
        self._closing = True

        pending = [
            self._cancel(task)
            for task in (self._keepalive_task, self._reconnect_task, *self._scheduled)
        ]
        socket = self._socket
        if socket is not None:
            _logger.info(f"{self._log_prefix} closing relay connection ({code=})")
            await socket.close(code, reason)

        reader = self._reader_task
        if reader is not None and reader is not asyncio.current_task():
            pending.append(reader)

        await asyncio.gather(*(task for task in pending if task is not None), return_exceptions=True)

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def _log_prefix(self):
        return self.session._log_prefix  # noqa

    def __repr__(self):
        return f"<ConnectionManager({self.url}, open={self.is_open}, closing={self._closing})>"
