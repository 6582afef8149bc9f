import asyncio
import json

import pytest
from websockets.exceptions import ConnectionClosedError

_CLOSE = object()


class FakeSocket:
    """One client connection of :class: `FakeRelay`, quacks like a websockets client connection"""

    def __init__(self, relay):
        self.relay = relay
        self.inbox = asyncio.Queue()
        self.sent = []
        self.close_code = None
        self.closed = False
        self.client_id = None
        self.last_target = None

    async def send(self, data):
        if self.closed:
            raise ConnectionClosedError(None, None)
        self.sent.append(data)
        self.relay.route(self, data)

    def deliver(self, raw):
        if not self.closed:
            self.inbox.put_nowait(raw)

    def drop(self, code=1006):
        """Relay side close"""
        self._close(code)

    async def close(self, code=1000, reason=""):
        self._close(code)

    def _close(self, code):
        if self.closed:
            return
        self.closed = True
        self.close_code = code
        self.inbox.put_nowait(_CLOSE)
        self.relay.forget(self)

    def __aiter__(self):
        return self._frames()

    async def _frames(self):
        while True:
            raw = await self.inbox.get()
            if raw is _CLOSE:
                return
            yield raw

    @property
    def sent_messages(self):
        return [json.loads(frame) for frame in self.sent if isinstance(frame, str)]

    @property
    def sent_types(self):
        return [message["type"] for message in self.sent_messages]


class FakeRelay:
    """In memory relay, routes frames by opaque identifier only

    * ``register`` binds ``connectionId`` to the socket and answers ``registered``
    * ``receiver-ready`` goes to ``senderId``
    * any other text frame goes to its ``target_id``, which also becomes the
      destination of binary frames that follow on the same socket
    * unroutable frames are answered with an ``error`` frame

    Attributes:
        fail_opens(int): number of upcoming :meth: `connect` calls that raise ``OSError``
        assign_ids(dict): overrides the id answered in ``registered``
    """

    def __init__(self):
        self.clients = {}
        self.sockets = []
        self.connect_calls = 0
        self.fail_opens = 0
        self.assign_ids = {}

    async def connect(self, url):
        self.connect_calls += 1
        if self.fail_opens > 0:
            self.fail_opens -= 1
            raise OSError(f"relay at {url} is down")
        socket = FakeSocket(self)
        self.sockets.append(socket)
        return socket

    def route(self, socket, raw):
        if isinstance(raw, (bytes, bytearray, memoryview)):
            self._forward(socket, socket.last_target, bytes(raw))
            return

        data = json.loads(raw)
        match data.get("type"):
            case "register":
                client_id = self.assign_ids.get(data["connectionId"], data["connectionId"])
                socket.client_id = client_id
                self.clients[client_id] = socket
                socket.deliver(json.dumps({"type": "registered", "id": client_id}))
            case "receiver-ready":
                self._forward(socket, data.get("senderId"), raw)
            case "check-recipient" | "ping":
                pass
            case _:
                socket.last_target = data.get("target_id")
                self._forward(socket, socket.last_target, raw)

    def _forward(self, socket, target, raw):
        destination = self.clients.get(target)
        if destination is None:
            socket.deliver(json.dumps({"type": "error", "message": f"target {target} not connected"}))
            return
        destination.deliver(raw)

    def forget(self, socket):
        if self.clients.get(socket.client_id) is socket:
            del self.clients[socket.client_id]

    @property
    def last_socket(self):
        return self.sockets[-1]


class Recorder:
    """Stands in for ``ConnectionManager.send`` and ``ConnectionManager.schedule``"""

    def __init__(self):
        self.frames = []
        self.scheduled = []

    async def send(self, frame):
        self.frames.append(frame)

    def schedule(self, delay, frame):
        self.scheduled.append((delay, frame))

    def of_type(self, cls):
        return [frame for frame in self.frames if isinstance(frame, cls)]

    @property
    def payloads(self):
        return [frame for frame in self.frames if isinstance(frame, bytes)]


@pytest.fixture
def relay():
    return FakeRelay()


@pytest.fixture
def recorder():
    return Recorder()
