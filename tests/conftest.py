import io
import typing

import pytest

from ferry import Connection, Headers


class FakeSink:
    def __init__(self, fail_after: typing.Optional[int] = None):
        self.writes: typing.List[bytes] = []
        self.closed = False
        self.fail_after = fail_after

    def write(self, data: bytes) -> int:
        if self.fail_after is not None and len(self.writes) >= self.fail_after:
            raise BrokenPipeError("connection reset")
        self.writes.append(bytes(data))
        return len(data)

    def close(self) -> None:
        self.closed = True

    @property
    def data(self) -> bytes:
        return b"".join(self.writes)


class FakeConnection(Connection):
    """Records what the pipeline asks of it and replies with a canned response."""

    def __init__(
        self,
        status: int = 200,
        reason: str = "OK",
        headers: typing.Any = (),
        body: bytes = b"",
        sink: typing.Optional[FakeSink] = None,
        input_error: typing.Optional[Exception] = None,
    ):
        self.request_headers = Headers()
        self.content_length: typing.Optional[int] = None
        self.fixed_length: typing.Optional[int] = None
        self.chunk_size: typing.Optional[int] = None
        self.sink = sink or FakeSink()
        self.sink_opened = False
        self.status = status
        self.reason = reason
        self.headers = Headers(headers)
        self.body = body
        self.input_error = input_error
        self.disconnected = False

    def add_request_header(self, name, value):
        self.request_headers.add(name, value)

    def set_request_header(self, name, value):
        self.request_headers[name] = value

    def set_content_length(self, content_length):
        self.content_length = content_length

    def enable_fixed_length_mode(self, content_length):
        self.fixed_length = content_length

    def enable_chunked_mode(self, chunk_size):
        self.chunk_size = chunk_size

    def open_output_sink(self):
        self.sink_opened = True
        return self.sink

    def status_code(self):
        return self.status

    def status_message(self):
        return self.reason

    def response_headers(self):
        return self.headers

    def open_input_source(self):
        if self.input_error is not None:
            raise self.input_error
        return io.BytesIO(self.body)

    def disconnect(self):
        self.disconnected = True


class FakeSocket:
    """Replays 'response' in pieces of at most 'piece_size' bytes."""

    def __init__(self, response: bytes, piece_size: int = 7):
        self.sent = bytearray()
        self.response = response
        self.piece_size = piece_size
        self.closed = False

    def sendall(self, data: bytes) -> None:
        self.sent += data

    def recv(self, n: int) -> bytes:
        data = self.response[: min(n, self.piece_size)]
        self.response = self.response[len(data) :]
        return data

    def close(self) -> None:
        self.closed = True


class RecordingProgress:
    def __init__(self):
        self.sent: typing.List[typing.Tuple[int, int]] = []
        self.received: typing.List[typing.Tuple[int, int]] = []

    def on_request_progress(self, sent, total):
        self.sent.append((sent, total))

    def on_response_progress(self, received, total):
        self.received.append((received, total))


@pytest.fixture
def connection():
    return FakeConnection()


@pytest.fixture
def progress():
    return RecordingProgress()


@pytest.fixture
def temp_files(monkeypatch):
    """Records every temporary file the transfer creates."""
    import ferry.response
    import ferry.transfer
    from ferry.utils import create_temp_file

    created: typing.List[str] = []

    def recording_create_temp_file(prefix):
        fd, path = create_temp_file(prefix)
        created.append(path)
        return fd, path

    monkeypatch.setattr(ferry.transfer, "create_temp_file", recording_create_temp_file)
    monkeypatch.setattr(ferry.response, "create_temp_file", recording_create_temp_file)
    return created
