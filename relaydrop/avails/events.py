from typing import NamedTuple, Optional

from relaydrop.avails.wire import WireMessage


class Opened(NamedTuple):
    reconnect: bool = False


class Closed(NamedTuple):
    code: Optional[int]
    will_retry: bool


class Exhausted(NamedTuple):
    attempts: int


class Inbound(NamedTuple):
    message: WireMessage


class Payload(NamedTuple):
    data: bytes


class Begin(NamedTuple):
    pass


class Finished(NamedTuple):
    pass


class Errored(NamedTuple):
    reason: str
