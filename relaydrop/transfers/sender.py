import asyncio
import functools
import mmap
from contextlib import aclosing

from relaydrop.avails import (
    FileChunk,
    FileTransferComplete,
    InvalidStateError,
    TransferError,
    const,
    use,
)
from relaydrop.avails.status import ProgressStatus
from relaydrop.transfers import thread_pool_for_disk_io
from relaydrop.transfers._fileobject import FileItem
from relaydrop.transfers._logger import logger as _logger
from relaydrop.transfers.abc import AbstractSender, CommonExceptionHandlersMixIn


class Sender(CommonExceptionHandlersMixIn, AbstractSender):
    """Sends one file to the paired receiver

    Every chunk goes out as a ``file-chunk`` text frame immediately followed by its binary frame,
    the next range of the file is read only after both frames were handed to ``send_function``

    Args:
        session(Session): paired session, ``peer_id`` is the target of every frame
        send_function(Callable[[WireMessage | bytes], Awaitable]): usually :meth: `ConnectionManager.send`
        file(FileItem | str | Path): file to send
        status_updater(ProgressStatus): progress reporting
        chunk_size(int): fixed for the whole session, declared on ``session``
        stall_timeout(float): seconds without a chunk before :attr: `stall_timer` fires
    """

    def __init__(
            self,
            session,
            send_function,
            file,
            status_updater=None,
            *,
            chunk_size=None,
            send_timeout=None,
            stall_timeout=None,
            on_stall=None,
    ):
        self.session = session
        self.send_func = send_function
        self.file_item = file if isinstance(file, FileItem) else FileItem(file)
        self.status_updater = status_updater or ProgressStatus(show_bar=False)
        self.chunk_size = chunk_size or const.CHUNK_SIZE
        self.timeout = const.SEND_TIMEOUT if send_timeout is None else send_timeout
        self.stall_timer = use.StallTimer(stall_timeout, on_stall, name=self._log_prefix)
        self.chunks_sent = 0
        self.completed = False
        self.to_stop = False

    async def send_file(self):
        if self.session.peer_id is None:
            raise InvalidStateError(f"{self._log_prefix} no receiver paired yet")
        self.session.declare_chunk_size(self.chunk_size)
        try:
            if self.file_item.size <= 0:
                raise TransferError(f"{self.file_item.path} is empty, nothing to send")
            await self.send_func(self.file_item.metadata().to_message(self.session.peer_id))
            _logger.info(f"{self._log_prefix} sent file-info {self.file_item}, {self.chunk_size=}")

            self.status_updater.status_setup(
                prefix=f"sending: {self.file_item.name}",
                initial_limit=self.file_item.seeked,
                final_limit=self.file_item.size,
            )
            self.stall_timer.reset()
            async with aclosing(send_actual_file(
                    self._send_chunk,
                    self.file_item,
                    chunk_len=self.chunk_size,
                    timeout=self.timeout,
            )) as send_file:
                async for seeked in send_file:
                    self.stall_timer.reset()
                    self.status_updater.update_status(seeked)
                    yield seeked
                    if self.to_stop:
                        break

            if self.to_stop:
                return
            await self._send_completion()
        except Exception as exp:
            await self.handle_exception(exp)
        finally:
            self.stall_timer.cancel()
            self.status_updater.close()

    async def _send_chunk(self, chunk):
        await self.send_func(FileChunk(self.session.peer_id, self.chunks_sent, len(chunk)))
        await self.send_func(chunk)
        self.chunks_sent += 1

    async def _send_completion(self):
        complete = FileTransferComplete(
            self.session.peer_id,
            chunk_count=self.chunks_sent,
            total_bytes=self.file_item.seeked,
        )
        # sent twice, receiver treats the duplicate as a no-op
        await self.send_func(complete)
        await self.send_func(complete)
        self.completed = True
        _logger.info(
            f"{self._log_prefix} sent completion, {self.chunks_sent} chunks, {self.file_item.seeked} bytes"
        )

    @property
    def progress(self):
        return self.status_updater.percent

    async def cancel(self):
        self.to_stop = True

    @property
    def id(self):
        return self.session.local_id

    @property
    def current_file(self):
        return self.file_item

    @property
    def _log_prefix(self):
        return f"[sender:{use.shorten_id(self.session.local_id)}]"


async def send_actual_file(
        send_function,
        file,
        *,
        chunk_len=None,
        timeout=10,
        th_pool=thread_pool_for_disk_io,
):
    """Sends file to other end using ``send_function``

    Opens file in **rb** mode from the ``path`` attribute from ``file item``
    reads ``seeked`` attribute of ``file item`` to start the transfer from
    calls ``send_function`` and awaits on it every time this function tries to send a chunk,
    a range is read only after the previous one was handed over

    Args:
        send_function(Callable): function to call when a chunk is ready
        file(FileItem): file to send
        chunk_len(int): length of each chunk passed into ``send_function`` for each call
        timeout(int): timeout in seconds used to wait upon send_function
        th_pool(ThreadPoolExecutor): thread pool executor to use while reading the file

    Yields:
        number indicating the file size sent
    """

    chunk_size = chunk_len or const.CHUNK_SIZE
    with open(file.path, "rb") as f:
        with mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ) as f_mapped:
            seek = file.seeked
            asyncify = functools.partial(
                asyncio.get_running_loop().run_in_executor,
                th_pool,
                f_mapped.__getitem__,
            )

            for offset in range(seek, file.size, chunk_size):
                chunk = await asyncify(slice(offset, offset + chunk_size))

                await asyncio.wait_for(send_function(chunk), timeout)
                seek += len(chunk)
                file.seeked = seek
                yield seek
