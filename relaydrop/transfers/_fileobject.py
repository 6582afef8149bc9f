import mimetypes
import re
from dataclasses import dataclass
from pathlib import Path

from relaydrop.avails import FileInfo, InvalidPacket, const


def stringify_size(size):
    sizes = ['B', 'KB', 'MB', 'GB', 'TB']
    index = 0
    while size >= 1024 and index < len(sizes) - 1:
        size /= 1024
        index += 1
    return f"{size:.2f} {sizes[index]}"


@dataclass(slots=True, frozen=True)
class FileMetadata:
    """Declared by sender in ``file-info``, ``size`` is the only ground truth of completion

    Args:
        name(str): file name as chosen by sender, not trusted as a path
        size(int): total bytes, always > 0
        mime_type(str): content type hint
    """
    name: str
    size: int
    mime_type: str = const.DEFAULT_MIME_TYPE

    def __post_init__(self):
        if isinstance(self.size, bool) or not isinstance(self.size, int) or self.size <= 0:
            raise ValueError(f"file size should be a positive integer, got {self.size!r}")

    @classmethod
    def from_message(cls, message: FileInfo):
        try:
            return cls(message.name, message.size, message.mime_type or const.DEFAULT_MIME_TYPE)
        except ValueError as ve:
            raise InvalidPacket(f"bad file-info: {ve}") from ve

    def to_message(self, target_id):
        return FileInfo(target_id=target_id, name=self.name, size=self.size, mime_type=self.mime_type)

    def __str__(self):
        name_str = f"...{self.name[-20:]}" if len(self.name) > 20 else self.name
        return f"FileMetadata({name_str}, {stringify_size(self.size)}, {self.mime_type})"


class FileItem:
    """A file on disk selected for sending

    Attributes:
        path: The Path object representing the file's path.
        size: The size of the file in bytes, read once when constructed.
        seeked: bytes of the file already handed to the socket.
    """
    __slots__ = 'path', 'size', 'seeked'

    def __init__(self, path, seeked=0):
        """
        Raises:
            FileNotFoundError: if path does not exist
            IsADirectoryError: if path is a directory
        """
        self.path = Path(path)
        if self.path.is_dir():
            raise IsADirectoryError(f"{self.path} is a directory, only single files can be sent")
        self.size = self.path.stat().st_size
        self.seeked = seeked

    @property
    def name(self):
        return self.path.name

    @property
    def mime_type(self):
        guessed, _ = mimetypes.guess_type(self.path.name)
        return guessed or const.DEFAULT_MIME_TYPE

    def metadata(self):
        return FileMetadata(self.name, self.size, self.mime_type)

    def __str__(self):
        name_str = f"...{self.name[-20:]}" if len(self.name) > 20 else self.name
        return f"FileItem({name_str}, {stringify_size(self.size)})"

    def __repr__(self):
        return f"FileItem(name={self.name[:10]}, size={self.size}, seeked={self.seeked})"


_UNSAFE_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]')


def sanitize_name(name: str) -> str:
    """Strips anything that could make ``name`` escape the download directory"""
    name = _UNSAFE_CHARS.sub('_', Path(name.replace('\\', '/')).name).strip(' .')
    return name or "received_file"


def validatename(name, root_path) -> Path:
    """
    Ensures a unique filename if a file with the same name already exists
    in the `root_path`

    Args:
        name (str): file name as announced by sender
        root_path(Path): Directory path to validate with

    Returns:
        Path: a path inside ``root_path`` that does not exist yet
    """

    original_path = Path(sanitize_name(name))
    base = original_path.stem  # Base name without extension
    ext = original_path.suffix  # File extension
    new_file_name = original_path.name  # Start with the original name

    counter = 1
    while (Path(root_path) / new_file_name).exists():
        new_file_name = f"{base} ({counter}){ext}"
        counter += 1

    return Path(root_path) / new_file_name
