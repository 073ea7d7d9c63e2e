"""Running a transfer off the calling thread.

'submit()' hands the whole exchange (send the request, then buffer the
response) to a 'concurrent.futures' executor and returns a TransferTask.
'send_async()' does the same from trio code. Either way the work is
cancelled by setting a shared 'threading.Event' which the transfer
checks before every read and write.
"""
import concurrent.futures
import functools
import logging
import threading
import typing

import trio

from .connection import Connection
from .exceptions import FerryError
from .models import Request
from .progress import ProgressListener
from .response import Response
from .transfer import send

log = logging.getLogger(__name__)

ConnectionFactory = typing.Callable[[Request], Connection]


class TransferListener:
    """Hooks into the lifecycle of a background transfer. They're
    called on the worker thread, the default implementations do nothing.
    """

    def on_setup(self, request: Request) -> None:
        pass

    def on_request_exception(self, request: Request, error: FerryError) -> None:
        pass

    def on_response_exception(self, response: Response, error: FerryError) -> None:
        pass

    def on_response(self, response: Response) -> None:
        pass


def run_transfer(
    request: Request,
    connect: ConnectionFactory,
    *,
    progress: typing.Optional[ProgressListener] = None,
    listener: typing.Optional[TransferListener] = None,
    abort: typing.Optional[threading.Event] = None,
) -> typing.Optional[Response]:
    """Sends 'request' over a connection from 'connect' and buffers
    the Response. Returns 'None' if the transfer was aborted.
    """
    listener = listener or TransferListener()
    abort = abort or threading.Event()

    listener.on_setup(request)
    try:
        response = send(request, connect(request), progress=progress, abort=abort)
    except FerryError as e:
        listener.on_request_exception(request, e)
        raise
    if response is None:
        return None

    try:
        buffered = response.buffer(progress, abort)
    except FerryError as e:
        response.close()
        listener.on_response_exception(response, e)
        raise
    if not buffered:
        response.close()
        return None

    listener.on_response(response)
    return response


class TransferTask:
    def __init__(
        self,
        future: "concurrent.futures.Future[typing.Optional[Response]]",
        abort: threading.Event,
    ):
        self.future = future
        self._abort = abort

    def abort(self) -> None:
        """Stops the transfer at the next read or write. Does
        nothing once the transfer is complete.
        """
        self._abort.set()

    def cancel(self) -> bool:
        """Aborts the transfer and drops it if it hasn't started yet.
        Returns 'True' unless the transfer was already done.
        """
        if self.future.done():
            return False
        self._abort.set()
        self.future.cancel()
        return True

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    def done(self) -> bool:
        return self.future.done()

    def result(
        self, timeout: typing.Optional[float] = None
    ) -> typing.Optional[Response]:
        """The buffered Response, 'None' for an aborted or cancelled
        transfer. Re-raises whatever the transfer raised.
        """
        if self.future.cancelled():
            return None
        return self.future.result(timeout)

    def add_done_callback(self, fn: typing.Callable[["TransferTask"], None]) -> None:
        self.future.add_done_callback(lambda _: fn(self))

    def __repr__(self) -> str:
        return f"<TransferTask done={self.done()} aborted={self.aborted}>"


def submit(
    request: Request,
    connect: ConnectionFactory,
    *,
    executor: typing.Optional[concurrent.futures.Executor] = None,
    progress: typing.Optional[ProgressListener] = None,
    listener: typing.Optional[TransferListener] = None,
) -> TransferTask:
    """Starts the transfer on 'executor' or on a thread of its own."""
    abort = threading.Event()
    work = functools.partial(
        run_transfer,
        request,
        connect,
        progress=progress,
        listener=listener,
        abort=abort,
    )
    if executor is not None:
        return TransferTask(executor.submit(work), abort)

    own_executor = concurrent.futures.ThreadPoolExecutor(
        max_workers=1, thread_name_prefix="ferry"
    )
    try:
        return TransferTask(own_executor.submit(work), abort)
    finally:
        own_executor.shutdown(wait=False)


async def send_async(
    request: Request,
    connect: ConnectionFactory,
    *,
    progress: typing.Optional[ProgressListener] = None,
    listener: typing.Optional[TransferListener] = None,
) -> typing.Optional[Response]:
    """Runs the transfer in a trio worker thread. Cancelling the
    calling task aborts the transfer, the worker thread is
    abandoned and finishes at its next read or write.
    """
    abort = threading.Event()
    work = functools.partial(
        run_transfer,
        request,
        connect,
        progress=progress,
        listener=listener,
        abort=abort,
    )
    try:
        return await trio.to_thread.run_sync(work, abandon_on_cancel=True)
    except trio.Cancelled:
        log.debug("Cancelled transfer of %r", request)
        abort.set()
        raise
