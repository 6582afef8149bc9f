import pytest

from relaydrop.avails import FileInfo, InvalidPacket
from relaydrop.transfers import TransferState
from relaydrop.transfers._fileobject import FileItem, FileMetadata, sanitize_name, stringify_size, validatename


@pytest.mark.parametrize("size, expected", [
    (0, "0.00 B"),
    (1023, "1023.00 B"),
    (1024, "1.00 KB"),
    (10 * 1024 * 1024, "10.00 MB"),
])
def test_stringify_size(size, expected):
    assert stringify_size(size) == expected


@pytest.mark.parametrize("size", [0, -1, "12", 1.5, True])
def test_metadata_needs_positive_integer_size(size):
    with pytest.raises(ValueError):
        FileMetadata("a.bin", size)


def test_metadata_from_message():
    metadata = FileMetadata.from_message(FileInfo("r", "a.pdf", 10, "application/pdf"))
    assert metadata == FileMetadata("a.pdf", 10, "application/pdf")
    assert metadata.to_message("r") == FileInfo("r", "a.pdf", 10, "application/pdf")

    with pytest.raises(InvalidPacket):
        FileMetadata.from_message(FileInfo("r", "a.pdf", -10))


def test_file_item_reads_size_and_guesses_type(tmp_path):
    path = tmp_path / "photo.png"
    path.write_bytes(b"\x89PNG" + b"\x00" * 60)
    item = FileItem(path)
    assert item.size == 64
    assert item.name == "photo.png"
    assert item.metadata() == FileMetadata("photo.png", 64, "image/png")

    unknown = tmp_path / "blob.zzzunknown"
    unknown.write_bytes(b"1")
    assert FileItem(unknown).mime_type == "application/octet-stream"


def test_file_item_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        FileItem(tmp_path / "nope.bin")


@pytest.mark.parametrize("name, expected", [
    ("report.txt", "report.txt"),
    ("../../etc/passwd", "passwd"),
    ("..\\..\\boot.ini", "boot.ini"),
    ('bad:name?.txt', "bad_name_.txt"),
    ("..", "received_file"),
    ("", "received_file"),
])
def test_sanitize_name(name, expected):
    assert sanitize_name(name) == expected


def test_validatename_counts_up(tmp_path):
    assert validatename("a.txt", tmp_path) == tmp_path / "a.txt"
    (tmp_path / "a.txt").touch()
    (tmp_path / "a (1).txt").touch()
    assert validatename("a.txt", tmp_path) == tmp_path / "a (2).txt"


def test_transfer_state_progress_never_decreases():
    state = TransferState()
    assert state.add(b"abc", 10) == 30
    assert state.add(b"defghijk", 10) == 100
    assert state.bytes_received == 11
    assert state.assemble() == b"abcdefghijk"
    state.discard()
    assert state.bytes_received == 0 and state.assemble() == b""

