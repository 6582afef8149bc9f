import enum
import logging
from dataclasses import dataclass
from typing import Optional

from relaydrop.avails import InvalidStateError, use

_logger = logging.getLogger(__name__)


class Role(enum.Enum):
    SENDER = "sender"
    RECEIVER = "receiver"


class SessionState(enum.IntEnum):
    IDLE = enum.auto()
    REGISTERING = enum.auto()
    AWAITING_PEER = enum.auto()
    PAIRED = enum.auto()
    TRANSFERRING = enum.auto()
    COMPLETED = enum.auto()
    FAILED = enum.auto()


TERMINAL_STATES = frozenset({SessionState.COMPLETED, SessionState.FAILED})

_ALLOWED = {
    SessionState.IDLE: {SessionState.REGISTERING},
    SessionState.REGISTERING: {SessionState.AWAITING_PEER, SessionState.PAIRED},
    SessionState.AWAITING_PEER: {SessionState.PAIRED},
    SessionState.PAIRED: {SessionState.TRANSFERRING},
    SessionState.TRANSFERRING: {SessionState.COMPLETED},
    SessionState.COMPLETED: set(),
    SessionState.FAILED: set(),
}


@dataclass(slots=True)
class Session:
    """One transfer attempt, owned by the peer that created it

    Attributes:
        role(Role): sender or receiver
        local_id(str): id this peer is registered under at the relay
        target_id(str): receiver only, the sender id taken from the share link
        peer_id(str): id of the paired peer, immutable once set
        state(SessionState): current handshake state
        reconnect_attempts(int): consecutive failed reconnects, back to 0 on every successful open
        chunk_size(int): declared by sender engine, fixed for the life of the session
        failure_reason(str): human-readable reason once ``FAILED``
    """
    role: Role
    local_id: str
    target_id: Optional[str] = None
    peer_id: Optional[str] = None
    state: SessionState = SessionState.IDLE
    reconnect_attempts: int = 0
    chunk_size: Optional[int] = None
    failure_reason: Optional[str] = None

    @classmethod
    def for_sender(cls, local_id=None):
        return cls(Role.SENDER, local_id or use.get_unique_id())

    @classmethod
    def for_receiver(cls, sender_id, local_id=None):
        """A fresh connection id is generated for the receiver, never equal to ``sender_id``"""
        local_id = local_id or use.get_unique_id()
        while local_id == sender_id:
            local_id = use.get_unique_id()
        return cls(Role.RECEIVER, local_id, target_id=sender_id)

    @property
    def is_terminal(self):
        return self.state in TERMINAL_STATES

    @property
    def is_paired(self):
        return self.peer_id is not None

    def transition(self, new_state: SessionState):
        """Moves to ``new_state``

        Returns:
            bool: False if already in ``new_state``

        Raises:
            InvalidStateError: if the move is not in the handshake's transition table
        """
        if new_state is self.state:
            return False

        if new_state is SessionState.FAILED and not self.is_terminal:
            pass
        elif new_state not in _ALLOWED[self.state]:
            raise InvalidStateError(f"{self._log_prefix} cannot go from {self.state.name} to {new_state.name}")

        _logger.debug(f"{self._log_prefix} changing state {self.state.name} -> {new_state.name}")
        self.state = new_state
        return True

    def set_peer(self, peer_id):
        if self.peer_id is not None and self.peer_id != peer_id:
            raise InvalidStateError(f"{self._log_prefix} already paired with {self.peer_id}, refusing {peer_id}")
        self.peer_id = peer_id

    def adopt_id(self, relay_id):
        """The relay's confirmation is authoritative over the id this peer picked"""
        if relay_id and relay_id != self.local_id:
            _logger.info(f"{self._log_prefix} relay confirmed id {relay_id}, replacing {self.local_id}")
            self.local_id = relay_id

    def declare_chunk_size(self, chunk_size):
        if self.chunk_size is not None and self.chunk_size != chunk_size:
            raise InvalidStateError(f"chunk size already declared as {self.chunk_size}, got {chunk_size}")
        self.chunk_size = chunk_size

    def fail(self, reason):
        if self.is_terminal:
            return False
        self.failure_reason = str(reason)
        self.transition(SessionState.FAILED)
        _logger.error(f"{self._log_prefix} failed: {self.failure_reason}")
        return True

    @property
    def _log_prefix(self):
        return f"[{self.role.value}:{use.shorten_id(self.local_id)}]"

    def __str__(self):
        return (
            f"<Session({self.role.value}, local={use.shorten_id(self.local_id)}, "
            f"peer={use.shorten_id(self.peer_id) if self.peer_id else None}, state={self.state.name})>"
        )
