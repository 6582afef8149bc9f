"""Every Wire Format of relaydrop

This module contains all the classes related to how control frames appear on the relay socket.

Two kinds of frames share one websocket:
    * text frames, a json object discriminated by its ``type`` field (one class per type below)
    * binary frames, raw chunk payload, correlated with the ``file-chunk`` frame sent just before it

All classes provide serializing (:meth: `dump`) and, through :func: `load_message`, de-serializing.

"""

import dataclasses
import json as _json
import types
from dataclasses import dataclass
from typing import ClassVar, Optional, Union, get_args, get_origin

from relaydrop.avails import constants as _const
from relaydrop.avails.exceptions import InvalidPacket

__all__ = (
    'WireMessage',
    'Register',
    'Registered',
    'ReceiverReady',
    'CheckRecipient',
    'FileInfo',
    'FileChunk',
    'FileTransferComplete',
    'TransferComplete',
    'TransferErrorMessage',
    'Ping',
    'RelayError',
    'MESSAGE_TYPES',
    'load_message',
    'unpack_frame',
)


class WireMessage:
    """Base of every control frame

    Subclasses are dataclasses that declare ``type`` (the wire tag) and
    ``_fields_map`` (python attribute -> json key), keys absent from the json
    fall back to the dataclass default, or make the frame invalid if there is none
    """
    __slots__ = ()

    type: ClassVar[str] = ""
    _fields_map: ClassVar[dict[str, str]] = {}

    @property
    def dict(self):
        data = {"type": self.type}
        for attr, key in self._fields_map.items():
            value = getattr(self, attr)
            if value is not None:
                data[key] = value
        return data

    def dump(self) -> str:
        return _json.dumps(self.dict)

    def __str__(self):
        return self.dump()

    @classmethod
    def from_dict(cls, data):
        kwargs = {}
        missing = []
        for field in dataclasses.fields(cls):  # noqa
            key = cls._fields_map[field.name]
            if key in data:
                kwargs[field.name] = data[key]
            elif field.default is dataclasses.MISSING:
                missing.append(key)
        if missing:
            raise InvalidPacket(f"fields missing for {cls.type!r}: {missing}")
        return cls(**kwargs)


@dataclass(slots=True)
class Register(WireMessage):
    type = "register"
    _fields_map = {"connection_id": "connectionId"}

    connection_id: str


@dataclass(slots=True)
class Registered(WireMessage):
    type = "registered"
    _fields_map = {"id": "id"}

    id: str


@dataclass(slots=True)
class ReceiverReady(WireMessage):
    """Receiver announcing that it wants the file of ``sender_id``

    ``senderId`` and ``target_id`` both carry the sender id on the wire,
    the relay routes on the former
    """
    type = "receiver-ready"
    _fields_map = {"sender_id": "senderId", "receiver_id": "receiverId"}

    sender_id: str
    receiver_id: str

    @property
    def dict(self):
        return {
            "type": self.type,
            "senderId": self.sender_id,
            "target_id": self.sender_id,
            "receiverId": self.receiver_id,
        }

    @classmethod
    def from_dict(cls, data):
        sender_id = data.get("senderId") or data.get("target_id")
        if not sender_id or "receiverId" not in data:
            raise InvalidPacket(f"receiver-ready without sender or receiver id: {data}")
        return cls(sender_id, data["receiverId"])


@dataclass(slots=True)
class CheckRecipient(WireMessage):
    type = "check-recipient"
    _fields_map = {"connection_id": "connectionId", "request_status": "requestStatus"}

    connection_id: str
    request_status: bool = True


@dataclass(slots=True)
class FileInfo(WireMessage):
    type = "file-info"
    _fields_map = {"target_id": "target_id", "name": "name", "size": "size", "mime_type": "mimeType"}

    target_id: str
    name: str
    size: int
    mime_type: str = _const.DEFAULT_MIME_TYPE


@dataclass(slots=True)
class FileChunk(WireMessage):
    """Metadata of the binary frame that follows"""
    type = "file-chunk"
    _fields_map = {"target_id": "target_id", "chunk_number": "chunkNumber", "chunk_size": "chunkSize"}

    target_id: str
    chunk_number: int
    chunk_size: int


@dataclass(slots=True)
class FileTransferComplete(WireMessage):
    """Sender's completion signal"""
    type = "file-transfer-complete"
    _fields_map = {"target_id": "target_id", "chunk_count": "chunkCount", "total_bytes": "totalBytes"}

    target_id: str
    chunk_count: Optional[int] = None
    total_bytes: Optional[int] = None


@dataclass(slots=True)
class TransferComplete(WireMessage):
    """Receiver's acknowledgment"""
    type = "transfer-complete"
    _fields_map = {
        "target_id": "target_id",
        "success": "success",
        "size": "size",
        "received_chunks": "receivedChunks",
    }

    target_id: str
    success: bool = True
    size: Optional[int] = None
    received_chunks: Optional[int] = None


@dataclass(slots=True)
class TransferErrorMessage(WireMessage):
    type = "transfer-error"
    _fields_map = {"target_id": "target_id", "error": "error"}

    target_id: str
    error: str = "unknown error"


@dataclass(slots=True)
class Ping(WireMessage):
    type = "ping"
    _fields_map = {}


@dataclass(slots=True)
class RelayError(WireMessage):
    """Relay could not route a frame (e.g. target not registered)"""
    type = "error"
    _fields_map = {"message": "message"}

    message: str = ""


MESSAGE_TYPES: dict[str, type[WireMessage]] = {
    cls.type: cls
    for cls in (
        Register,
        Registered,
        ReceiverReady,
        CheckRecipient,
        FileInfo,
        FileChunk,
        FileTransferComplete,
        TransferComplete,
        TransferErrorMessage,
        Ping,
        RelayError,
    )
}


def _accepted_types(annotation):
    if get_origin(annotation) in (Union, types.UnionType):
        return get_args(annotation)
    return (annotation,)


def _check_types(message):
    for field in dataclasses.fields(message):  # noqa
        value = getattr(message, field.name)
        accepted = _accepted_types(field.type)
        if value is None and type(None) in accepted:
            continue
        # bool is an int subclass, a flag is never a size
        if isinstance(value, bool) and bool not in accepted:
            ok = False
        else:
            ok = isinstance(value, accepted)
        if not ok:
            expected = "|".join(t.__name__ for t in accepted)
            raise InvalidPacket(
                f"{message.type}.{message._fields_map[field.name]} should be {expected}, got {value!r}"
            )


def load_message(text: Union[str, bytes]) -> WireMessage:
    """Parses a text frame into its message class

    Args:
        text(str | bytes): raw json text as received from relay

    Raises:
        InvalidPacket: if text is not a json object, has an unknown ``type``,
            misses a required field or carries a field of the wrong type
    """
    try:
        data = _json.loads(text)
    except (ValueError, TypeError) as ve:
        raise InvalidPacket(f"Ill-formed data: {text!r}. Error: {ve}") from ve

    match data:
        case {"type": str(tag)}:
            pass
        case dict():
            raise InvalidPacket(f"frame without type: {data}")
        case _:
            raise InvalidPacket(f"frame is not a json object: {text!r}")

    if (cls := MESSAGE_TYPES.get(tag)) is None:
        raise InvalidPacket(f"unknown frame type: {tag!r}")

    message = cls.from_dict(data)
    _check_types(message)
    return message


def unpack_frame(raw) -> Union[WireMessage, bytes]:
    """Utility function to classify a frame received from the relay

        binary frames are chunk payloads and returned as ``bytes``,
        text frames are unpacked into their message class

    Args:
        raw(str | bytes | bytearray | memoryview) : frame to unpack
    Raises:
        InvalidPacket if unpacking failed
    """
    if isinstance(raw, (bytes, bytearray, memoryview)):
        return bytes(raw)
    if isinstance(raw, str):
        return load_message(raw)
    raise InvalidPacket(f"unsupported frame type: {type(raw)}")
