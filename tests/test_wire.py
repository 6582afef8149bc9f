import json

import pytest

from relaydrop.avails import (
    CheckRecipient,
    FileChunk,
    FileInfo,
    FileTransferComplete,
    InvalidPacket,
    MESSAGE_TYPES,
    Ping,
    ReceiverReady,
    Register,
    Registered,
    RelayError,
    TransferComplete,
    TransferErrorMessage,
    load_message,
    unpack_frame,
)


def test_every_type_is_registered():
    assert set(MESSAGE_TYPES) == {
        "register",
        "registered",
        "receiver-ready",
        "check-recipient",
        "file-info",
        "file-chunk",
        "file-transfer-complete",
        "transfer-complete",
        "transfer-error",
        "ping",
        "error",
    }


def test_register_uses_wire_field_names():
    assert json.loads(Register("abc").dump()) == {"type": "register", "connectionId": "abc"}


def test_check_recipient_requests_status_by_default():
    assert json.loads(CheckRecipient("abc").dump()) == {
        "type": "check-recipient",
        "connectionId": "abc",
        "requestStatus": True,
    }


def test_receiver_ready_carries_sender_id_twice():
    data = json.loads(ReceiverReady(sender_id="s-1", receiver_id="r-1").dump())
    assert data == {"type": "receiver-ready", "senderId": "s-1", "target_id": "s-1", "receiverId": "r-1"}


def test_receiver_ready_accepts_target_id_alone():
    message = load_message('{"type": "receiver-ready", "target_id": "s-1", "receiverId": "r-1"}')
    assert message == ReceiverReady("s-1", "r-1")


def test_receiver_ready_without_receiver_is_invalid():
    with pytest.raises(InvalidPacket):
        load_message('{"type": "receiver-ready", "senderId": "s-1"}')


def test_file_info_defaults_mime_type():
    message = load_message('{"type": "file-info", "target_id": "r", "name": "a.txt", "size": 12}')
    assert message == FileInfo("r", "a.txt", 12, "application/octet-stream")


def test_file_info_keeps_mime_type():
    message = FileInfo("r", "a.txt", 12, "text/plain")
    assert load_message(message.dump()) == message
    assert json.loads(message.dump())["mimeType"] == "text/plain"


def test_optional_fields_are_left_out_when_unset():
    assert json.loads(FileTransferComplete("r").dump()) == {"type": "file-transfer-complete", "target_id": "r"}


def test_transfer_complete_fields():
    data = json.loads(TransferComplete("s", success=True, size=10, received_chunks=2).dump())
    assert data == {"type": "transfer-complete", "target_id": "s", "success": True, "size": 10, "receivedChunks": 2}


def test_registered_and_ping():
    assert load_message('{"type": "registered", "id": "x"}') == Registered("x")
    assert load_message('{"type": "ping"}') == Ping()


def test_relay_error_frame():
    assert load_message('{"type": "error", "message": "target not found"}') == RelayError("target not found")


def test_transfer_error_default_reason():
    assert load_message('{"type": "transfer-error", "target_id": "s"}') == TransferErrorMessage("s", "unknown error")


def test_unknown_fields_are_ignored():
    message = load_message('{"type": "file-chunk", "target_id": "r", "chunkNumber": 3, "chunkSize": 5, "extra": 1}')
    assert message == FileChunk("r", 3, 5)


@pytest.mark.parametrize("text", [
    "not json",
    "",
    "[1, 2, 3]",
    '"file-info"',
    "{}",
    '{"type": 5}',
    '{"type": "no-such-type"}',
    '{"type": "file-info", "target_id": "r", "name": "a"}',
    '{"type": "file-info", "target_id": "r", "name": "a", "size": "12"}',
    '{"type": "file-chunk", "target_id": "r", "chunkNumber": true, "chunkSize": 5}',
    '{"type": "register"}',
])
def test_bad_frames_raise_invalid_packet(text):
    with pytest.raises(InvalidPacket):
        load_message(text)


def test_unpack_frame_splits_binary_from_text():
    assert unpack_frame(b"\x00\x01") == b"\x00\x01"
    assert unpack_frame(bytearray(b"ab")) == b"ab"
    assert unpack_frame(memoryview(b"cd")) == b"cd"
    assert unpack_frame('{"type": "ping"}') == Ping()


def test_unpack_frame_rejects_other_objects():
    with pytest.raises(InvalidPacket):
        unpack_frame(42)


@pytest.mark.parametrize("text", [
    '{"type": "file-info", "target_id": "r", "name": 123, "size": 5}',
    '{"type": "file-info", "target_id": "r", "name": "a", "size": 5, "mimeType": null}',
    '{"type": "registered", "id": 123}',
    '{"type": "receiver-ready", "senderId": "s-1", "receiverId": 7}',
    '{"type": "receiver-ready", "senderId": ["s-1"], "receiverId": "r-1"}',
    '{"type": "register", "connectionId": {"id": "x"}}',
    '{"type": "transfer-error", "target_id": "s", "error": 404}',
    '{"type": "transfer-complete", "target_id": "s", "success": "yes"}',
    '{"type": "file-transfer-complete", "target_id": "r", "chunkCount": "3"}',
    '{"type": "file-chunk", "target_id": 9, "chunkNumber": 0, "chunkSize": 5}',
])
def test_wrong_typed_fields_raise_invalid_packet(text):
    with pytest.raises(InvalidPacket):
        load_message(text)


def test_optional_integers_accept_null():
    message = load_message('{"type": "file-transfer-complete", "target_id": "r", "chunkCount": null, "totalBytes": 4}')
    assert message == FileTransferComplete("r", None, 4)
