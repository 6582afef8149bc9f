from abc import ABC, abstractmethod

from relaydrop.avails import NotConnected, TransferError, TransferErrorMessage, TransferIncomplete
from relaydrop.transfers._logger import logger


class AbstractTransferHandle(ABC):

    @abstractmethod
    async def cancel(self):
        """Cancel the transfer"""

    @property
    @abstractmethod
    def id(self):
        """ID of the transfer"""

    @property
    @abstractmethod
    def current_file(self):
        """File under transfer"""

    @property
    def _log_prefix(self):
        return f"[{self.__class__.__name__}]"


class AbstractSender(AbstractTransferHandle, ABC):

    @abstractmethod
    def __init__(self, session, send_function, file, status_updater): ...

    @abstractmethod
    def send_file(self):
        """Async generator sending the file passed into object's constructor, yields bytes sent so far"""


class AbstractReceiver(AbstractTransferHandle, ABC):

    @abstractmethod
    def __init__(self, session, send_function, status_updater): ...

    @abstractmethod
    async def feed(self, item):
        """Consume one ``file-info``, ``file-chunk``, completion frame or binary payload"""

    @abstractmethod
    async def complete(self):
        """Assemble the received bytes, acknowledge to sender, returns the file contents"""


class CommonExceptionHandlersMixIn:
    """Turns low level failures into :class: `TransferError` after telling the peer

    Expects ``session``, ``send_func`` and ``_log_prefix`` on the host class
    """
    __slots__ = ()

    async def _report_to_peer(self, reason):
        target = self.session.peer_id
        if target is None:
            return
        try:
            await self.send_func(TransferErrorMessage(target, str(reason)))
        except NotConnected:
            logger.debug(f"{self._log_prefix} could not report failure to peer, socket is gone")

    async def _handle_os_error(self, err, detail=""):
        logger.error(f"{self._log_prefix} got error, aborting transfer", exc_info=True)
        await self._report_to_peer(detail or f"I/O error: {err}")
        te = TransferError(detail or str(err))
        te.__cause__ = err
        raise te

    def _handle_not_connected(self, err, detail=""):
        logger.error(f"{self._log_prefix} relay socket lost in between, transfer incomplete")
        ti = TransferIncomplete(detail or str(err))
        ti.__cause__ = err
        raise ti

    async def _handle_transfer_error(self, err):
        logger.error(f"{self._log_prefix} transfer failed: {err}")
        await self._report_to_peer(err)
        raise err

    async def handle_exception(self, exp):
        if isinstance(exp, NotConnected):
            self._handle_not_connected(exp)
        if isinstance(exp, TransferError):
            await self._handle_transfer_error(exp)
        if isinstance(exp, OSError):
            await self._handle_os_error(exp)

        raise exp
