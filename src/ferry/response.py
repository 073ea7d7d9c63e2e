import datetime
import io
import json
import logging
import os
import threading
import typing
import weakref

from .connection import Connection, wrap_io_errors
from .decoders import DecodingReader, get_content_decoder
from .exceptions import BufferingError, TransferError
from .models import Headers, Request
from .progress import AbortableSource, AbortTransfer, ProgressListener, ProgressSource
from .utils import (
    CHUNK_SIZE,
    create_temp_file,
    encoding_detector,
    is_known_encoding,
    parse_header_params,
    parse_http_date,
    remove_temp_file,
)

log = logging.getLogger(__name__)

# Bodies of up to this many bytes are buffered in memory,
# anything larger or of unknown length goes to a temporary file.
MAX_IN_MEMORY_RESPONSE = 8192
RESPONSE_BUFFER_PREFIX = "response-buffer"
DEFAULT_CHARSET = "UTF-8"

SUCCESSFUL_STATUSES = frozenset((200, 201, 203, 204, 205, 206))


class Response:
    """The status and headers are read as soon as the Response is
    created, the body is read lazily from the connection.

    Call '.buffer()' to consume the body into memory or a temporary
    file and release the connection. After that the body can be
    read any number of times. A temporary file is removed once the
    Response is closed or garbage collected.
    """

    def __init__(
        self,
        connection: Connection,
        *,
        auto_decompress: bool = True,
        request: typing.Optional[Request] = None,
    ):
        self.request = request
        self.auto_decompress = auto_decompress
        self._connection: typing.Optional[Connection] = connection

        with wrap_io_errors(request=request):
            self.status_code = connection.status_code()
            self.status_message = connection.status_message()
            headers = connection.response_headers()
        self.headers = headers if isinstance(headers, Headers) else Headers(headers)

        self.original_charset = self.header_parameter("content-type", "charset")
        if self.original_charset and is_known_encoding(self.original_charset):
            self.charset = self.original_charset
        else:
            self.charset = DEFAULT_CHARSET

        self._buffered = False
        self._memory: typing.Optional[bytes] = None
        self._file_path: typing.Optional[str] = None
        self._finalizer: typing.Optional[weakref.finalize] = None

    def header(self, name: str) -> typing.Optional[str]:
        return self.headers.get_one(name)

    def header_values(self, name: str) -> typing.List[str]:
        return self.headers.get_all(name)

    def header_parameters(self, name: str) -> typing.Dict[str, str]:
        return parse_header_params(self.header(name))

    def header_parameter(self, name: str, parameter: str) -> typing.Optional[str]:
        parameter = parameter.lower()
        for key, value in self.header_parameters(name).items():
            if key.lower() == parameter:
                return value
        return None

    def int_header(self, name: str, default: int = -1) -> int:
        try:
            return int(self.header(name) or "")
        except ValueError:
            return default

    def date_header(self, name: str) -> typing.Optional[datetime.datetime]:
        return parse_http_date(self.header(name))

    @property
    def content_type(self) -> typing.Optional[str]:
        return self.header("content-type")

    @property
    def content_length(self) -> typing.Optional[int]:
        if "content-length" in self.headers:
            values = self.headers.get_all("content-length")
            if len(set(values)) == 1 and values[0].strip().isdigit():
                return int(values[0])
        return None

    @property
    def content_encoding(self) -> typing.Optional[str]:
        return self.header("content-encoding")

    @property
    def location(self) -> typing.Optional[str]:
        return self.header("location")

    @property
    def etag(self) -> typing.Optional[str]:
        return self.header("etag")

    @property
    def last_modified(self) -> typing.Optional[datetime.datetime]:
        return self.date_header("last-modified")

    @property
    def is_successful(self) -> bool:
        return self.status_code in SUCCESSFUL_STATUSES

    @property
    def is_buffered(self) -> bool:
        return self._buffered

    @property
    def buffered_file(self) -> typing.Optional[str]:
        """Path of the temporary file holding the buffered body, if any"""
        return self._file_path

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    def stream(
        self,
        progress: typing.Optional[ProgressListener] = None,
        abort: typing.Optional[threading.Event] = None,
    ) -> typing.BinaryIO:
        """Returns a file-like object to read the body from. Before
        buffering this reads from the connection and can only be
        done once. The caller must close what's returned.
        """
        if self._buffered:
            if self._memory is not None:
                return io.BytesIO(self._memory)
            if self._file_path is not None:
                return open(self._file_path, "rb")
            return io.BytesIO()

        if self._connection is None:
            return io.BytesIO()

        source = self._open_connection_source()
        total = self.content_length
        decoder = None
        if self.auto_decompress:
            decoder = get_content_decoder(self.content_encoding)
        if decoder is not None:
            source = typing.cast(typing.BinaryIO, DecodingReader(source, decoder))
            # Decompressed and compressed lengths differ
            total = None
        if abort is not None:
            source = typing.cast(typing.BinaryIO, AbortableSource(source, abort))
        if progress is not None:
            source = typing.cast(
                typing.BinaryIO,
                ProgressSource(source, progress.on_response_progress, total),
            )
        return source

    def _open_connection_source(self) -> typing.BinaryIO:
        assert self._connection is not None
        try:
            return self._connection.open_input_source()
        except OSError as e:
            # Error responses frequently come without a body at all
            if self.status_code >= 400 and not self.content_length:
                return io.BytesIO()
            self.disconnect()
            raise TransferError(
                "couldn't read the response body",
                request=self.request,
                response=self,
                error=e,
            ) from e

    def _stream_length(self) -> typing.Optional[int]:
        if self.auto_decompress and get_content_decoder(self.content_encoding):
            return None
        return self.content_length

    def buffer(
        self,
        progress: typing.Optional[ProgressListener] = None,
        abort: typing.Optional[threading.Event] = None,
    ) -> bool:
        """Reads the whole body into memory or into a temporary
        file and releases the connection. Returns 'False' if 'abort'
        was set before the body was completely read, the Response is
        then disconnected without a body.
        """
        if self._buffered:
            return True

        length = self._stream_length()
        try:
            with wrap_io_errors(request=self.request, response=self):
                source = self.stream(progress, abort)
                try:
                    if length is not None and length <= MAX_IN_MEMORY_RESPONSE:
                        self._memory = _read_exactly(source, length)
                    else:
                        self._spool(source, length)
                finally:
                    source.close()
        except AbortTransfer:
            log.debug("Aborted buffering the body of %r", self)
            return False
        finally:
            self.disconnect()

        self._buffered = True
        return True

    def _spool(self, source: typing.BinaryIO, length: typing.Optional[int]) -> None:
        try:
            fd, path = create_temp_file(RESPONSE_BUFFER_PREFIX)
        except OSError as e:
            if length is None:
                raise BufferingError(
                    "couldn't create a temporary file to buffer a response "
                    "of unknown length",
                    request=self.request,
                    response=self,
                    error=e,
                ) from e
            log.warning(
                "Couldn't create a temporary file (%s), buffering %d bytes in memory",
                e,
                length,
            )
            self._memory = _read_exactly(source, length)
            return

        try:
            with os.fdopen(fd, "wb") as f:
                while True:
                    data = source.read(CHUNK_SIZE)
                    if not data:
                        break
                    f.write(data)
        except BaseException:
            remove_temp_file(path)
            raise

        self._file_path = path
        self._finalizer = weakref.finalize(self, remove_temp_file, path)
        log.debug("Buffered the body of %r in %s", self, path)

    def data(self) -> bytes:
        """The whole body as bytes"""
        if self._buffered and self._memory is not None:
            return self._memory
        with wrap_io_errors(request=self.request, response=self):
            source = self.stream()
            try:
                return _read_all(source)
            finally:
                source.close()

    def text(self) -> str:
        """The body decoded with 'charset', without a leading BOM"""
        text = self.data().decode(self.charset, errors="replace")
        if text.startswith("\ufeff"):
            text = text[1:]
        return text

    def json(self) -> typing.Any:
        return json.loads(self.text())

    @property
    def apparent_encoding(self) -> str:
        """Encoding of the body as guessed by chardet. Buffers the
        body first so it can still be read afterwards.
        """
        self.buffer()
        detector = encoding_detector()
        source = self.stream()
        try:
            data = source.read(CHUNK_SIZE)
            while data and not detector.done:
                detector.feed(data)
                data = source.read(CHUNK_SIZE)
        finally:
            source.close()
        detector.close()
        return detector.result["encoding"] or DEFAULT_CHARSET

    def disconnect(self) -> None:
        """Releases the connection. A Response that isn't buffered
        has no body after this.
        """
        connection, self._connection = self._connection, None
        if connection is not None:
            connection.disconnect()

    def close(self) -> None:
        """Releases the connection and removes the temporary file"""
        self.disconnect()
        if self._finalizer is not None:
            self._finalizer()
            self._finalizer = None
            self._file_path = None

    def __enter__(self) -> "Response":
        return self

    def __exit__(self, *_: typing.Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return "<Response [%d]>" % self.status_code


def _read_exactly(source: typing.BinaryIO, length: int) -> bytes:
    """Reads until 'length' bytes were read or the source is exhausted."""
    data = bytearray()
    while len(data) < length:
        chunk = source.read(min(CHUNK_SIZE, length - len(data)))
        if not chunk:
            break
        data += chunk
    return bytes(data)


def _read_all(source: typing.BinaryIO) -> bytes:
    data = bytearray()
    chunk = source.read(CHUNK_SIZE)
    while chunk:
        data += chunk
        chunk = source.read(CHUNK_SIZE)
    return bytes(data)
