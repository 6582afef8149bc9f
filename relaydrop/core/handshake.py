"""Registration and pairing

:class: `Handshake` turns connection lifecycle events and inbound frames into
session transitions plus a list of actions for the owner to carry out.
It never touches the socket itself, which keeps every transition testable
without a relay.

    IDLE -> REGISTERING -> AWAITING_PEER -> PAIRED -> TRANSFERRING -> COMPLETED
                                 (any non terminal state) -> FAILED

"""

import enum
import logging
from typing import NamedTuple, Optional

from relaydrop.avails import (
    CheckRecipient,
    FileChunk,
    FileInfo,
    FileTransferComplete,
    InvalidStateError,
    PairingMismatch,
    Ping,
    ReceiverReady,
    Register,
    Registered,
    RelayError,
    TransferComplete,
    TransferErrorMessage,
    WireMessage,
    const,
)
from relaydrop.avails.events import Begin, Closed, Errored, Exhausted, Finished, Inbound, Opened, Payload
from relaydrop.core.session import Role, Session, SessionState

_logger = logging.getLogger(__name__)


class Send(NamedTuple):
    message: WireMessage


class SendLater(NamedTuple):
    delay: float
    message: WireMessage


class PeerPaired(NamedTuple):
    peer_id: str


class StartTransfer(NamedTuple):
    pass


class Dispatch(NamedTuple):
    """Hand over to the transfer engine, ``item`` is a message or a binary payload"""
    item: WireMessage | bytes


class Terminate(NamedTuple):
    state: SessionState
    reason: Optional[str] = None


class IdMatch(enum.Enum):
    EXACT = enum.auto()
    FALLBACK = enum.auto()
    NONE = enum.auto()


def match_sender_id(declared, own) -> IdMatch:
    """Compares the sender id a receiver asked for with the id this sender registered

    Exact string equality is the only regular path, containment either way is a
    degraded fallback kept for relays or links that mangle the id (surrounding
    whitespace, extra prefix or suffix)
    """
    if not declared or not own:
        return IdMatch.NONE
    if declared == own:
        return IdMatch.EXACT
    if declared in own or own in declared:
        return IdMatch.FALLBACK
    return IdMatch.NONE


class Handshake:
    """Drives one :class: `Session` through registration and pairing

    Args:
        session(Session): session to mutate
        resend_delay(float): receiver only, delay before re-announcing ``receiver-ready``
    """

    def __init__(self, session: Session, *, resend_delay=None):
        self.session = session
        self.resend_delay = const.RECEIVER_READY_RESEND_DELAY if resend_delay is None else resend_delay

    @property
    def state(self):
        return self.session.state

    @property
    def _log_prefix(self):
        return self.session._log_prefix  # noqa

    def handle(self, event) -> list:
        """Feeds one event

        Returns:
            list: actions for the caller to perform, in order
        """
        if self.session.is_terminal:
            return self._handle_terminal(event)

        match event:
            case Opened():
                return self._on_opened(event)
            case Closed(code=code, will_retry=will_retry):
                if will_retry:
                    _logger.info(f"{self._log_prefix} connection lost ({code=}), waiting for reconnect")
                    return []
                return self._fail(f"relay closed the connection ({code=})")
            case Exhausted(attempts=attempts):
                return self._fail(f"could not reconnect to relay after {attempts} attempts")
            case Errored(reason=reason):
                return self._fail(reason)
            case Begin():
                return self._on_begin()
            case Finished():
                return self._on_finished()
            case Payload(data=data):
                return self._on_payload(data)
            case Inbound(message=message):
                return self._on_message(message)

        raise TypeError(f"unknown event: {event!r}")

    def _handle_terminal(self, event):
        match event:
            case Inbound(message=TransferComplete() as ack) if self.session.role is Role.SENDER:
                return [Dispatch(ack)]
            case Inbound(message=TransferErrorMessage(error=error) as report) if self.session.role is Role.SENDER:
                _logger.warning(f"{self._log_prefix} receiver reported a failure after completion: {error}")
                return [Dispatch(report)]
            case Payload(data=data):
                _logger.debug(f"{self._log_prefix} session is {self.state.name}, dropping {len(data)} bytes")
            case _:
                _logger.debug(f"{self._log_prefix} session is {self.state.name}, ignoring {event}")
        return []

    def _fail(self, reason):
        self.session.fail(reason)
        return [Terminate(SessionState.FAILED, self.session.failure_reason)]

    def _on_opened(self, event):
        session = self.session
        if session.state is SessionState.IDLE:
            session.transition(SessionState.REGISTERING)
        else:
            _logger.info(f"{self._log_prefix} reconnected in {session.state.name}, registering again")

        actions = [Send(Register(session.local_id))]

        if session.role is Role.RECEIVER:
            if session.state is SessionState.REGISTERING:
                session.transition(SessionState.AWAITING_PEER)
            if session.state is SessionState.AWAITING_PEER:
                actions.extend(self._announce_ready())
        elif session.state is SessionState.AWAITING_PEER and event.reconnect:
            actions.append(Send(CheckRecipient(session.local_id)))

        return actions

    def _announce_ready(self):
        ready = ReceiverReady(sender_id=self.session.target_id, receiver_id=self.session.local_id)
        return [Send(ready), SendLater(self.resend_delay, ready)]

    def _on_begin(self):
        if self.state is not SessionState.PAIRED:
            raise InvalidStateError(f"{self._log_prefix} transfer can only begin once paired, state={self.state.name}")
        self.session.transition(SessionState.TRANSFERRING)
        return [StartTransfer()]

    def _on_finished(self):
        if self.state is not SessionState.TRANSFERRING:
            raise InvalidStateError(f"{self._log_prefix} nothing to finish in state={self.state.name}")
        self.session.transition(SessionState.COMPLETED)
        return [Terminate(SessionState.COMPLETED)]

    def _on_payload(self, data):
        if self.session.role is Role.RECEIVER and self.state is SessionState.TRANSFERRING:
            return [Dispatch(data)]
        _logger.warning(f"{self._log_prefix} unexpected binary frame ({len(data)} bytes) in {self.state.name}")
        return []

    def _on_message(self, message):
        match message:
            case Ping():
                return []
            case RelayError(message=text):
                _logger.warning(f"{self._log_prefix} relay error: {text}")
                return []
            case Registered(id=relay_id):
                return self._on_registered(relay_id)
            case TransferErrorMessage(error=error):
                return self._fail(f"peer reported: {error}")

        if self.session.role is Role.SENDER:
            return self._on_sender_message(message)
        return self._on_receiver_message(message)

    def _on_registered(self, relay_id):
        session = self.session
        previous_id = session.local_id
        session.adopt_id(relay_id)

        if session.role is Role.SENDER:
            if session.state is SessionState.REGISTERING:
                session.transition(SessionState.AWAITING_PEER)
                return [Send(CheckRecipient(session.local_id))]
            return []

        if session.local_id != previous_id and session.state is SessionState.AWAITING_PEER:
            return self._announce_ready()
        return []

    def _on_sender_message(self, message):
        match message:
            case ReceiverReady(sender_id=sender_id, receiver_id=receiver_id):
                return self._on_receiver_ready(sender_id, receiver_id)
            case TransferComplete():
                return [Dispatch(message)]

        _logger.warning(f"{self._log_prefix} discarding {message.type!r}, not meant for a sender")
        return []

    def _on_receiver_ready(self, sender_id, receiver_id):
        session = self.session
        if session.is_paired:
            if receiver_id == session.peer_id:
                _logger.debug(f"{self._log_prefix} duplicate receiver-ready from {receiver_id}")
            else:
                _logger.warning(
                    f"{self._log_prefix} already paired with {session.peer_id}, ignoring receiver {receiver_id}"
                )
            return []

        if session.state not in (SessionState.REGISTERING, SessionState.AWAITING_PEER):
            _logger.warning(f"{self._log_prefix} receiver-ready in {session.state.name}, ignored")
            return []

        try:
            self._verify_sender_id(sender_id, receiver_id)
        except PairingMismatch as pm:
            _logger.warning(f"{self._log_prefix} {pm}")
            return self._fail(str(pm))

        session.set_peer(receiver_id)
        session.transition(SessionState.PAIRED)
        _logger.info(f"{self._log_prefix} paired with receiver {receiver_id}")
        return [PeerPaired(receiver_id)]

    def _verify_sender_id(self, sender_id, receiver_id):
        own = self.session.local_id
        match match_sender_id(sender_id, own):
            case IdMatch.FALLBACK:
                _logger.warning(
                    f"{self._log_prefix} DEGRADED pairing, receiver asked for {sender_id!r}"
                    f" which only partially matches {own!r}"
                )
            case IdMatch.NONE:
                raise PairingMismatch(f"receiver {receiver_id} asked for sender {sender_id!r}, this is {own!r}")

    def _on_receiver_message(self, message):
        session = self.session
        match message:
            case FileInfo():
                if session.state is SessionState.AWAITING_PEER:
                    session.set_peer(session.target_id)
                    session.transition(SessionState.PAIRED)
                    session.transition(SessionState.TRANSFERRING)
                    _logger.info(f"{self._log_prefix} paired with sender {session.peer_id}")
                    return [PeerPaired(session.peer_id), Dispatch(message)]
                if session.state is SessionState.TRANSFERRING:
                    return [Dispatch(message)]
            case FileChunk() | FileTransferComplete() | TransferComplete():
                # older senders signal completion with transfer-complete
                if session.state is SessionState.TRANSFERRING:
                    return [Dispatch(message)]
            case _:
                _logger.warning(f"{self._log_prefix} discarding {message.type!r}, not meant for a receiver")
                return []

        _logger.warning(f"{self._log_prefix} {message.type!r} in {session.state.name}, ignored")
        return []
