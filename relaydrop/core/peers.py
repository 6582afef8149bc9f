"""Both ends of a relayed transfer

A peer owns one :class: `Session`, its :class: `ConnectionManager` and :class: `Handshake`.
Every socket event, timer and transfer engine outcome is fed one at a time into the
handshake and the returned actions are carried out in order.

"""

import asyncio
import logging
from contextlib import AsyncExitStack, aclosing
from typing import Callable, Optional

from relaydrop.avails import (
    InvalidPacket,
    InvalidStateError,
    NotConnected,
    ReconnectExhausted,
    TransferComplete,
    TransferError,
    TransferErrorMessage,
    const,
    use,
)
from relaydrop.avails.events import Begin, Errored, Exhausted, Finished
from relaydrop.avails.status import ProgressStatus
from relaydrop.core.connection import ConnectionManager
from relaydrop.core.handshake import Dispatch, Handshake, PeerPaired, Send, SendLater, StartTransfer, Terminate
from relaydrop.core.session import Session, SessionState
from relaydrop.transfers._fileobject import FileItem
from relaydrop.transfers.receiver import Receiver
from relaydrop.transfers.sender import Sender

_logger = logging.getLogger(__name__)


class _Peer:
    def __init__(
            self,
            session,
            *,
            url=None,
            connector=None,
            status_updater=None,
            stall_timeout=None,
            abort_on_stall=None,
            resend_delay=None,
            **connection_options,
    ):
        self.session = session
        self.connection = ConnectionManager(session, url, connector=connector, **connection_options)
        self.handshake = Handshake(session, resend_delay=resend_delay)
        self.status_updater = status_updater or ProgressStatus(show_bar=False)
        self.stall_timeout = stall_timeout
        self.abort_on_stall = const.ABORT_ON_STALL if abort_on_stall is None else abort_on_stall
        self._exhausted = None
        self._finished = False
        self._deadline = None

    async def _run(self):
        async with AsyncExitStack() as exit_stack:
            await exit_stack.enter_async_context(self.connection)
            exit_stack.push_async_callback(self._cleanup)
            while not self._finished:
                event = await self._next_event()
                if event is None:
                    break
                if isinstance(event, Exhausted):
                    self._exhausted = event.attempts
                await self._handle(event)

            if self.session.state is SessionState.COMPLETED:
                await self.connection.drain()

        if self.session.state is SessionState.FAILED:
            if self._exhausted is not None:
                raise ReconnectExhausted(self._exhausted)
            raise TransferError(self.session.failure_reason)

    async def _handle(self, event):
        for action in self.handshake.handle(event):
            await self._perform(action)

    async def _perform(self, action):
        match action:
            case Send(message=message):
                try:
                    await self.connection.send(message)
                except NotConnected:
                    _logger.warning(f"{self._log_prefix} could not send {message.type!r}, socket is down")
            case SendLater(delay=delay, message=message):
                self.connection.schedule(delay, message)
            case PeerPaired(peer_id=peer_id):
                await self._on_paired(peer_id)
            case StartTransfer():
                self._start_transfer()
            case Dispatch(item=item):
                await self._dispatch(item)
            case Terminate(state=state, reason=reason):
                await self._terminate(state, reason)

    async def _next_event(self):
        if self._deadline is None:
            return await self.connection.get_event()

        remaining = self._deadline - asyncio.get_running_loop().time()
        try:
            return await asyncio.wait_for(self.connection.get_event(), max(remaining, 0))
        except TimeoutError:
            return None

    def _on_stall(self):
        if self.abort_on_stall:
            self.connection.events.put_nowait(Errored(f"no progress for {self.stall_timeout or const.STALL_TIMEOUT}s"))

    async def _on_paired(self, peer_id):
        pass

    def _start_transfer(self):
        pass

    async def _dispatch(self, item):
        pass

    async def _terminate(self, state, reason):
        self._finished = True

    async def _cleanup(self):
        pass

    @property
    def state(self):
        return self.session.state

    @property
    def _log_prefix(self):
        return self.session._log_prefix  # noqa


class SenderPeer(_Peer):
    """Registers at the relay, waits for a receiver that asks for this sender's id and sends it ``path``

    Args:
        path(str | Path): file to send
        on_waiting(Callable[[str], None]): called with the share link once the relay confirmed registration
        ack_timeout(float): how long to wait for receiver's acknowledgment after sending completion
    """

    def __init__(
            self,
            path,
            *,
            session=None,
            chunk_size=None,
            ack_timeout=None,
            link_base=None,
            on_waiting: Optional[Callable[[str], None]] = None,
            **kwargs,
    ):
        self.file_item = FileItem(path)
        super().__init__(session or Session.for_sender(), **kwargs)
        self.chunk_size = chunk_size
        self.ack_timeout = const.ACK_WAIT_TIMEOUT if ack_timeout is None else ack_timeout
        self.link_base = link_base
        self.on_waiting = on_waiting
        self.sender = None
        self.acknowledgment: Optional[TransferComplete] = None
        self.receiver_error: Optional[str] = None
        self._transfer_task = None
        self._announced = False

    @property
    def share_link(self):
        return use.build_share_link(self.session.local_id, self.link_base)

    async def run(self):
        """
        Returns:
            TransferComplete: receiver's acknowledgment, None if it never arrived

        Raises:
            TransferError: session ended ``FAILED``
            ReconnectExhausted: relay could not be reached again
        """
        await self._run()
        return self.acknowledgment

    async def _handle(self, event):
        await super()._handle(event)
        if not self._announced and self.session.state is SessionState.AWAITING_PEER:
            self._announced = True
            _logger.info(f"{self._log_prefix} waiting for receiver, share link: {self.share_link}")
            if self.on_waiting:
                self.on_waiting(self.share_link)

    async def _on_paired(self, peer_id):
        await self._handle(Begin())

    def _start_transfer(self):
        self.sender = Sender(
            self.session,
            self.connection.send,
            self.file_item,
            self.status_updater,
            chunk_size=self.chunk_size,
            stall_timeout=self.stall_timeout,
            on_stall=self._on_stall,
        )
        self._transfer_task = asyncio.create_task(self._drive_sender(), name=f"send{self._log_prefix}")

    async def _drive_sender(self):
        try:
            async with aclosing(self.sender.send_file()) as send_file:
                async for _ in send_file:
                    pass
        except (TransferError, InvalidStateError) as te:
            self.connection.events.put_nowait(Errored(f"transfer failed: {te}"))
        else:
            if self.sender.completed:
                self.connection.events.put_nowait(Finished())

    async def _dispatch(self, item):
        if isinstance(item, TransferErrorMessage):
            self.receiver_error = item.error
            if self.session.state is SessionState.COMPLETED:
                self._finished = True
            return
        if not isinstance(item, TransferComplete):
            return
        if self.acknowledgment is None:
            _logger.info(f"{self._log_prefix} receiver acknowledged: {item}")
        self.acknowledgment = item
        if not item.success:
            _logger.warning(f"{self._log_prefix} receiver reported an unsuccessful transfer")
        if self.session.state is SessionState.COMPLETED:
            self._finished = True

    async def _terminate(self, state, reason):
        if state is SessionState.COMPLETED and self.acknowledgment is None and self.ack_timeout > 0:
            self._deadline = asyncio.get_running_loop().time() + self.ack_timeout
            return
        self._finished = True

    async def _next_event(self):
        event = await super()._next_event()
        if event is None:
            _logger.warning(f"{self._log_prefix} no acknowledgment from receiver within {self.ack_timeout}s")
        return event

    async def _cleanup(self):
        task = self._transfer_task
        if task is not None and not task.done():
            await self.sender.cancel()
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)


class ReceiverPeer(_Peer):
    """Registers at the relay and asks the sender named in a share link for its file

    Args:
        sender_id(str): bare sender id or share link
        threshold(float): completion threshold, see :class: `Receiver`
    """

    def __init__(self, sender_id, *, session=None, threshold=None, **kwargs):
        sender_id = use.parse_share_link(sender_id)
        super().__init__(session or Session.for_receiver(sender_id), **kwargs)
        self.threshold = threshold
        self.receiver = None
        self._get_event = None
        self._outcome_seen = False

    async def run(self):
        """
        Returns:
            tuple[FileMetadata, bytes]: what was announced and the received contents

        Raises:
            TransferError: session ended ``FAILED``
            ReconnectExhausted: relay could not be reached again
        """
        self.receiver = Receiver(
            self.session,
            self.connection.send,
            self.status_updater,
            schedule=self.connection.schedule,
            threshold=self.threshold,
            stall_timeout=self.stall_timeout,
            on_stall=self._on_stall,
        )
        await self._run()
        return self.receiver.metadata, self.receiver.result

    async def save(self, download_path=None):
        return await self.receiver.save(download_path)

    async def _next_event(self):
        if self._outcome_seen:
            return await super()._next_event()

        if self._get_event is None:
            self._get_event = asyncio.ensure_future(self.connection.get_event())
        done = self.receiver.done
        await asyncio.wait({self._get_event, done}, return_when=asyncio.FIRST_COMPLETED)

        if self._get_event.done():
            event, self._get_event = self._get_event.result(), None
            return event

        self._outcome_seen = True
        self._get_event.cancel()
        self._get_event = None
        if done.cancelled():
            return Errored("transfer cancelled")
        if (exp := done.exception()) is not None:
            return Errored(f"transfer failed: {exp}")
        return Finished()

    async def _dispatch(self, item):
        try:
            await self.receiver.feed(item)
        except InvalidPacket as ip:
            _logger.warning(f"{self._log_prefix} discarding frame: {ip}")
        except TransferError:
            # outcome is delivered through receiver.done
            pass

    async def _terminate(self, state, reason):
        self._finished = True
        if state is SessionState.FAILED and self.receiver is not None:
            await self.receiver.cancel()

    async def _cleanup(self):
        if self._get_event is not None:
            self._get_event.cancel()
            self._get_event = None
        self.receiver.stall_timer.cancel()
