class InvalidPacket(Exception):
    """Ill formed control frame (malformed json, unknown type or missing field)"""


class PairingMismatch(InvalidPacket):
    """receiver-ready frame that names some other sender"""


class InvalidStateError(Exception):
    """The operation is not allowed in this state."""


class NotConnected(ConnectionError):
    """Socket to relay is not open"""


class ReconnectExhausted(ConnectionError):
    """Gave up reconnecting to the relay

    Attributes:
        attempts(int): number of failed reconnection attempts made
    """

    def __init__(self, attempts, *args):
        super().__init__(f"failed to reconnect after {attempts} attempts", *args)
        self.attempts = attempts


class TransferError(Exception):
    """Transfer failed and cannot be continued"""


class TransferIncomplete(TransferError):
    """Data Transfer was broken in between"""
