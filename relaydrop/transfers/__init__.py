from concurrent.futures.thread import ThreadPoolExecutor
from dataclasses import dataclass, field

from relaydrop.avails import use

thread_pool_for_disk_io = ThreadPoolExecutor(thread_name_prefix="relaydrop-disk")


@dataclass(slots=True)
class TransferState:
    """Receiver side progress of one file

    Attributes:
        bytes_received(int): only ever grows
        chunks_received(list[bytes]): payloads in arrival order
        completed(bool): set at most once
        progress(int): last reported percentage, never decreases
    """
    bytes_received: int = 0
    chunks_received: list[bytes] = field(default_factory=list)
    completed: bool = False
    progress: int = 0

    def add(self, payload: bytes, declared_size: int):
        self.chunks_received.append(payload)
        self.bytes_received += len(payload)
        self.progress = max(self.progress, use.progress_percent(self.bytes_received, declared_size))
        return self.progress

    def assemble(self) -> bytes:
        return b"".join(self.chunks_received)

    def discard(self):
        self.chunks_received.clear()
        self.bytes_received = 0
