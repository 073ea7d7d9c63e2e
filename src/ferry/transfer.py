import contextlib
import io
import logging
import os
import threading
import typing

from .connection import Connection, wrap_io_errors
from .encoder import BodyEncoder
from .exceptions import ConfigurationError
from .models import Request
from .progress import UNKNOWN_LENGTH, AbortTransfer, ProgressListener, ProgressSink
from .response import Response
from .strategy import Strategy, TransferPlan, select_plan
from .utils import CHUNK_SIZE, create_temp_file, remove_temp_file

log = logging.getLogger(__name__)

REQUEST_BUFFER_PREFIX = "request-buffer"


def send(
    request: Request,
    connection: Connection,
    *,
    progress: typing.Optional[ProgressListener] = None,
    abort: typing.Optional[threading.Event] = None,
) -> typing.Optional[Response]:
    """Sends the request over 'connection' and returns the Response
    with its body still unread. Returns 'None' if 'abort' was set
    before the request was completely sent, the connection is
    disconnected in that case.

    Errors in the request's configuration raise 'ConfigurationError',
    a charset or content type that's invalid is caught before anything
    is written. A failure while writing or reading
    raises 'TransferError' after disconnecting.
    """
    request.check()
    charset = request.charset
    abort = abort or threading.Event()

    try:
        with wrap_io_errors(request=request), _wrap_encode_errors(request):
            plan = select_plan(request)
            log.debug(
                "Sending %r as %s in %s (estimated length %s)",
                request,
                plan.strategy.name,
                charset,
                plan.content_length,
            )

            for name, value in request.headers.items():
                connection.add_request_header(name, value)

            if plan.strategy is Strategy.NO_BODY:
                _report_start(progress, None)
            else:
                encoder = BodyEncoder(request, abort=abort)
                content_type = encoder.content_type
                if content_type is not None:
                    connection.set_request_header("content-type", content_type)
                _send_body[plan.strategy](connection, encoder, plan, progress)

            if abort.is_set():
                raise AbortTransfer()
            return Response(
                connection,
                auto_decompress=request.settings.auto_decompress,
                request=request,
            )
    except AbortTransfer:
        log.debug("Transfer of %r was aborted", request)
        connection.disconnect()
        return None
    except BaseException:
        connection.disconnect()
        raise


def write_request_body(request: Request, sink: typing.BinaryIO) -> typing.Optional[str]:
    """Encodes the body of 'request' into 'sink' without a connection.
    Returns the Content-Type the body must be sent with or 'None'
    if the request has no body.
    """
    request.check()
    if not request.has_body:
        return None
    encoder = BodyEncoder(request)
    with _wrap_encode_errors(request):
        encoder.write_to(sink)
    return encoder.content_type


@contextlib.contextmanager
def _wrap_encode_errors(request: Request) -> typing.Iterator[None]:
    try:
        yield
    except UnicodeEncodeError as e:
        raise ConfigurationError(
            f"can't encode the body of {request!r} as {e.encoding}: {e.reason}",
            request=request,
            error=e,
        ) from e


def _report_start(
    progress: typing.Optional[ProgressListener], total: typing.Optional[int]
) -> None:
    if progress is not None:
        progress.on_request_progress(0, UNKNOWN_LENGTH if total is None else total)


def _open_sink(
    connection: Connection,
    progress: typing.Optional[ProgressListener],
    total: typing.Optional[int],
) -> typing.BinaryIO:
    sink = connection.open_output_sink()
    _report_start(progress, total)
    if progress is not None:
        sink = typing.cast(
            typing.BinaryIO, ProgressSink(sink, progress.on_request_progress, total)
        )
    return sink


def _copy_to_sink(
    source: typing.BinaryIO, sink: typing.BinaryIO, abort: threading.Event
) -> None:
    while True:
        if abort.is_set():
            raise AbortTransfer()
        data = source.read(CHUNK_SIZE)
        if not data:
            break
        sink.write(data)


def _send_in_memory(
    connection: Connection,
    encoder: BodyEncoder,
    plan: TransferPlan,
    progress: typing.Optional[ProgressListener],
) -> None:
    body = io.BytesIO()
    encoder.write_to(body)
    if encoder.abort.is_set():
        raise AbortTransfer()

    data = body.getvalue()
    connection.set_content_length(len(data))
    # Nothing to write, the connection sends the empty body itself.
    if not data:
        _report_start(progress, 0)
        return

    sink = _open_sink(connection, progress, len(data))
    body.seek(0)
    _copy_to_sink(body, sink, encoder.abort)
    sink.close()


def _send_fixed_length(
    connection: Connection,
    encoder: BodyEncoder,
    plan: TransferPlan,
    progress: typing.Optional[ProgressListener],
) -> None:
    assert plan.content_length is not None
    connection.enable_fixed_length_mode(plan.content_length)
    sink = _open_sink(connection, progress, plan.content_length)
    encoder.write_to(sink)
    if encoder.abort.is_set():
        raise AbortTransfer()
    sink.close()


def _send_chunked(
    connection: Connection,
    encoder: BodyEncoder,
    plan: TransferPlan,
    progress: typing.Optional[ProgressListener],
) -> None:
    connection.enable_chunked_mode(plan.chunk_size or 0)
    sink = _open_sink(connection, progress, None)
    encoder.write_to(sink)
    if encoder.abort.is_set():
        raise AbortTransfer()
    sink.close()


def _send_spilled(
    connection: Connection,
    encoder: BodyEncoder,
    plan: TransferPlan,
    progress: typing.Optional[ProgressListener],
) -> None:
    fd, path = create_temp_file(REQUEST_BUFFER_PREFIX)
    try:
        with os.fdopen(fd, "wb") as f:
            encoder.write_to(f)
        if encoder.abort.is_set():
            raise AbortTransfer()

        content_length = os.path.getsize(path)
        log.debug("Spooled %d bytes of request body to %s", content_length, path)
        connection.enable_fixed_length_mode(content_length)
        sink = _open_sink(connection, progress, content_length)
        with open(path, "rb") as f:
            _copy_to_sink(f, sink, encoder.abort)
        sink.close()
    finally:
        remove_temp_file(path)


_send_body: typing.Dict[
    Strategy,
    typing.Callable[
        [Connection, BodyEncoder, TransferPlan, typing.Optional[ProgressListener]],
        None,
    ],
] = {
    Strategy.IN_MEMORY: _send_in_memory,
    Strategy.FIXED_LENGTH: _send_fixed_length,
    Strategy.CHUNKED: _send_chunked,
    Strategy.SPILL_TO_TEMP: _send_spilled,
}
