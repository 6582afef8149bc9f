import asyncio
from pathlib import Path

from relaydrop.avails import (
    FileChunk,
    FileInfo,
    FileTransferComplete,
    InvalidStateError,
    NotConnected,
    TransferComplete,
    TransferError,
    const,
    use,
)
from relaydrop.avails.status import ProgressStatus
from relaydrop.transfers import TransferState, thread_pool_for_disk_io
from relaydrop.transfers._fileobject import FileMetadata, validatename
from relaydrop.transfers._logger import logger as _logger
from relaydrop.transfers.abc import AbstractReceiver, CommonExceptionHandlersMixIn


class Receiver(CommonExceptionHandlersMixIn, AbstractReceiver):
    """Reassembles one file out of the frames forwarded by the handshake

    Completion happens once, on whichever comes first:
        * the sender's completion frame (``file-transfer-complete`` or ``transfer-complete``)
        * ``bytes_received`` reaching ``threshold`` of the declared size,
          below 1.0 assembly waits ``grace_delay`` seconds for frames still in flight

    :attr: `done` resolves to the file contents, or to the :class: `TransferError` that ended the transfer

    Args:
        session(Session): receiver session
        send_function(Callable[[WireMessage], Awaitable]): usually :meth: `ConnectionManager.send`
        status_updater(ProgressStatus): progress reporting
        schedule(Callable[[float, WireMessage], Any]): used for the delayed second acknowledgment
        threshold(float): fraction of declared size in (0, 1]
    """

    def __init__(
            self,
            session,
            send_function,
            status_updater=None,
            *,
            schedule=None,
            threshold=None,
            grace_delay=None,
            ack_resend_delay=None,
            stall_timeout=None,
            on_stall=None,
    ):
        self.session = session
        self.send_func = send_function
        self.status_updater = status_updater or ProgressStatus(show_bar=False)
        self.schedule = schedule
        self.threshold = const.COMPLETION_THRESHOLD if threshold is None else threshold
        if not 0 < self.threshold <= 1:
            raise ValueError(f"completion threshold should be in (0, 1], got {self.threshold}")
        self.grace_delay = const.COMPLETION_GRACE_DELAY if grace_delay is None else grace_delay
        self.ack_resend_delay = const.ACK_RESEND_DELAY if ack_resend_delay is None else ack_resend_delay
        self.stall_timer = use.StallTimer(stall_timeout, on_stall, name=self._log_prefix)

        self.metadata = None
        self.transfer_state = TransferState()
        self.result = None
        self.done = asyncio.get_running_loop().create_future()
        self._expected_chunk = None
        self._grace_task = None

    async def feed(self, item):
        """
        Returns:
            bytes: file contents if this item completed the transfer, None otherwise
        """
        match item:
            case FileInfo():
                self._on_file_info(item)
            case FileChunk():
                self._expected_chunk = item
            case FileTransferComplete() | TransferComplete():
                _logger.debug(f"{self._log_prefix} completion signal from sender: {item}")
                return await self.complete()
            case bytes():
                return await self._on_payload(item)
            case _:
                _logger.warning(f"{self._log_prefix} nothing to do with {item!r}")
        return None

    def _on_file_info(self, message):
        metadata = FileMetadata.from_message(message)
        if self.transfer_state.completed:
            _logger.warning(f"{self._log_prefix} file-info after completion, ignored")
            return
        if metadata == self.metadata:
            _logger.debug(f"{self._log_prefix} duplicate file-info, ignored")
            return
        if self.metadata is not None:
            _logger.warning(f"{self._log_prefix} sender restarted with {metadata}, dropping {self.metadata}")
            self.transfer_state.discard()

        self.metadata = metadata
        self._expected_chunk = None
        self.status_updater.status_setup(
            prefix=f"receiving: {metadata.name}",
            initial_limit=0,
            final_limit=metadata.size,
        )
        self.stall_timer.reset()
        _logger.info(f"{self._log_prefix} expecting {metadata}")

    async def _on_payload(self, data):
        if not data:
            _logger.debug(f"{self._log_prefix} zero length frame, ignored")
            return None
        if self.transfer_state.completed:
            _logger.debug(f"{self._log_prefix} {len(data)} bytes after completion, ignored")
            return None
        if self.metadata is None:
            _logger.warning(f"{self._log_prefix} {len(data)} bytes before file-info, ignored")
            return None

        expected = self._expected_chunk
        if expected is not None and expected.chunk_size != len(data):
            _logger.warning(
                f"{self._log_prefix} chunk {expected.chunk_number} announced {expected.chunk_size} bytes, got {len(data)}"
            )
        self._expected_chunk = None

        self.transfer_state.add(data, self.metadata.size)
        self.status_updater.update_status(self.transfer_state.bytes_received)
        self.stall_timer.reset()

        received, size = self.transfer_state.bytes_received, self.metadata.size
        if received < self.threshold * size:
            return None
        if received >= size:
            return await self.complete()

        if self._grace_task is None:
            _logger.info(
                f"{self._log_prefix} crossed completion threshold ({received}/{size}),"
                f" assembling in {self.grace_delay}s"
            )
            self._grace_task = asyncio.create_task(self._complete_after_grace())
        return None

    async def _complete_after_grace(self):
        await asyncio.sleep(self.grace_delay)
        try:
            await self.complete()
        except TransferError:
            # already reported and set on self.done
            pass

    async def complete(self):
        """Assembles and acknowledges, a second call is a no-op returning the first result

        Raises:
            TransferError: nothing was received or the assembled size differs from the declared size
        """
        if self.transfer_state.completed:
            return self.result
        self.transfer_state.completed = True
        self.stall_timer.cancel()
        if self._grace_task is not None and self._grace_task is not asyncio.current_task():
            self._grace_task.cancel()

        data = self.transfer_state.assemble()
        try:
            if not data:
                raise TransferError("no data received")
            if len(data) != self.metadata.size:
                raise TransferError(f"received {len(data)} bytes, sender declared {self.metadata.size}")
        except TransferError as te:
            self.transfer_state.discard()
            self.status_updater.close()
            self.done.set_exception(te)
            await self.handle_exception(te)

        self.result = data
        self.status_updater.close()
        await self._acknowledge(len(data))
        _logger.info(f"{self._log_prefix} received {self.metadata}")
        self.done.set_result(data)
        return data

    async def _acknowledge(self, size):
        ack = TransferComplete(
            self.session.peer_id or self.session.target_id,
            success=True,
            size=size,
            received_chunks=len(self.transfer_state.chunks_received),
        )
        try:
            await self.send_func(ack)
        except NotConnected:
            _logger.warning(f"{self._log_prefix} could not acknowledge, relay socket is gone")
        if self.schedule is not None:
            self.schedule(self.ack_resend_delay, ack)

    async def save(self, download_path=None):
        """Writes the received file inside ``download_path`` under a name that does not exist yet

        Returns:
            Path: where the file was written
        """
        if self.result is None:
            raise InvalidStateError(f"{self._log_prefix} nothing received yet")

        download_path = Path(download_path or const.PATH_DOWNLOAD)

        def _write():
            download_path.mkdir(parents=True, exist_ok=True)
            file_path = validatename(self.metadata.name, download_path)
            with open(file_path, "xb") as f:
                f.write(self.result)
            return file_path

        path = await asyncio.get_running_loop().run_in_executor(thread_pool_for_disk_io, _write)
        _logger.info(f"{self._log_prefix} saved to {path}")
        return path

    @property
    def progress(self):
        return self.transfer_state.progress

    async def cancel(self):
        self.stall_timer.cancel()
        if self._grace_task is not None:
            self._grace_task.cancel()
        self.transfer_state.discard()
        if not self.done.done():
            self.done.cancel()

    @property
    def id(self):
        return self.session.local_id

    @property
    def current_file(self):
        return self.metadata

    @property
    def _log_prefix(self):
        return f"[receiver:{use.shorten_id(self.session.local_id)}]"
