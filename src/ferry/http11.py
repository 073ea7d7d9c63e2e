"""A 'Connection' that speaks HTTP/1.1 over an already connected
socket using h11. It doesn't open, wrap or pool sockets, anything
with 'sendall()', 'recv()' and 'close()' works.
"""
import contextlib
import io
import typing

import h11

from .connection import Connection
from .exceptions import LocalProtocolError, RemoteProtocolError
from .models import Headers, Request
from .utils import CHUNK_SIZE

RECEIVE_SIZE = 65536


class SocketType(typing.Protocol):
    def sendall(self, data: bytes) -> None:
        ...

    def recv(self, n: int) -> bytes:
        ...

    def close(self) -> None:
        ...


@contextlib.contextmanager
def wrap_h11_errors() -> typing.Iterator[None]:
    try:
        yield
    except h11.LocalProtocolError as e:
        raise LocalProtocolError(str(e), error=e) from e
    except h11.RemoteProtocolError as e:
        raise RemoteProtocolError(str(e), error=e) from e


class HTTP11Connection(Connection):
    def __init__(
        self,
        sock: SocketType,
        method: str,
        target: str,
        *,
        host: str,
        receive_size: int = RECEIVE_SIZE,
    ):
        self.sock = sock
        self.method = method
        self.target = target
        self.receive_size = receive_size
        self.h11 = h11.Connection(h11.CLIENT)

        # Put the 'Host' header first in the request as it's required.
        self._headers: typing.List[typing.List[str]] = [["host", host]]
        self._chunk_size: typing.Optional[int] = None
        self._head_sent = False
        self._response: typing.Optional[h11.Response] = None
        self._closed = False

    @classmethod
    def for_request(
        cls, sock: SocketType, request: Request, **kwargs: typing.Any
    ) -> "HTTP11Connection":
        return cls(sock, request.method, request.target, host=request.host, **kwargs)

    def add_request_header(self, name: str, value: str) -> None:
        name = name.lower()
        # There's only ever one 'Host'
        if name == "host":
            self.set_request_header(name, value)
        else:
            self._check_head_not_sent(name)
            self._headers.append([name, value])

    def set_request_header(self, name: str, value: str) -> None:
        name = name.lower()
        self._check_head_not_sent(name)
        for i, header in enumerate(self._headers):
            if header[0] == name:
                header[1] = value
                self._headers[i + 1 :] = [
                    h for h in self._headers[i + 1 :] if h[0] != name
                ]
                return
        self._headers.append([name, value])

    def _check_head_not_sent(self, name: str) -> None:
        if self._head_sent:
            raise LocalProtocolError(
                f"can't set the '{name}' header, the request head was already sent"
            )

    def _remove_request_header(self, name: str) -> None:
        self._headers = [h for h in self._headers if h[0] != name]

    def set_content_length(self, content_length: int) -> None:
        self._remove_request_header("transfer-encoding")
        self.set_request_header("content-length", str(content_length))
        self._chunk_size = None

    enable_fixed_length_mode = set_content_length

    def enable_chunked_mode(self, chunk_size: int) -> None:
        self._remove_request_header("content-length")
        self.set_request_header("transfer-encoding", "chunked")
        self._chunk_size = chunk_size or CHUNK_SIZE

    def open_output_sink(self) -> "HTTP11OutputSink":
        self._send_head()
        return HTTP11OutputSink(self, self._chunk_size)

    def status_code(self) -> int:
        return self._receive_head().status_code

    def status_message(self) -> str:
        return bytes(self._receive_head().reason).decode("latin-1")

    def response_headers(self) -> Headers:
        return Headers(list(self._receive_head().headers))

    def open_input_source(self) -> "HTTP11InputSource":
        self._receive_head()
        return HTTP11InputSource(self)

    def disconnect(self) -> None:
        if not self._closed:
            self._closed = True
            self.sock.close()

    def _send(self, event: typing.Any) -> None:
        with wrap_h11_errors():
            data = self.h11.send(event)
        if data:
            self.sock.sendall(data)

    def _send_head(self) -> None:
        if self._head_sent:
            return
        self._head_sent = True
        self._send(
            h11.Request(
                method=self.method.encode("ascii"),
                target=self.target.encode("ascii"),
                headers=[
                    (k.encode("latin-1"), v.encode("latin-1"))
                    for k, v in self._headers
                ],
            )
        )

    def _end_request(self) -> None:
        self._send_head()
        if self.h11.our_state is h11.SEND_BODY:
            self._send(h11.EndOfMessage())

    def _next_event(self) -> typing.Any:
        while True:
            with wrap_h11_errors():
                event = self.h11.next_event()
            if event is not h11.NEED_DATA:
                return event
            # An empty read tells h11 the peer closed the connection
            data = self.sock.recv(self.receive_size)
            with wrap_h11_errors():
                self.h11.receive_data(data)

    def _receive_head(self) -> h11.Response:
        if self._response is not None:
            return self._response

        self._end_request()
        while True:
            event = self._next_event()
            if isinstance(event, h11.InformationalResponse):
                continue
            if isinstance(event, h11.Response):
                self._response = event
                return event
            raise RemoteProtocolError(
                f"connection closed before a response was received ({event!r})"
            )


class HTTP11OutputSink:
    """Writes become h11 Data events, in chunked mode each
    one carries at most 'chunk_size' bytes.
    """

    def __init__(
        self, connection: HTTP11Connection, chunk_size: typing.Optional[int]
    ) -> None:
        self.connection = connection
        self.chunk_size = chunk_size

    def write(self, data: bytes) -> int:
        size = self.chunk_size or len(data)
        for start in range(0, len(data), size):
            self.connection._send(h11.Data(data=data[start : start + size]))
        return len(data)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        self.connection._end_request()


class HTTP11InputSource(io.RawIOBase):
    def __init__(self, connection: HTTP11Connection) -> None:
        self.connection = connection
        self._data = b""
        self._ended = False

    def readable(self) -> bool:
        return True

    def readinto(self, b: typing.Any) -> int:
        while not self._data:
            if self._ended:
                return 0
            event = self.connection._next_event()
            if isinstance(event, h11.Data):
                self._data = bytes(event.data)
            elif isinstance(event, h11.EndOfMessage):
                self._ended = True
            else:
                raise RemoteProtocolError(
                    f"unexpected event while reading the response body ({event!r})"
                )

        n = min(len(b), len(self._data))
        b[:n] = self._data[:n]
        self._data = self._data[n:]
        return n
