import io
import os
import threading

import pytest

import ferry
from ferry import DynamicPart, Request, StreamPart, TransferSettings, send
from ferry.progress import UNKNOWN_LENGTH

from conftest import FakeConnection, FakeSink


def test_send_form_fields(connection):
    request = Request(
        "POST", "http://example.com/form", fields={"a": "1", "b": "x y"}
    )
    response = send(request, connection)

    assert connection.content_length == 9
    assert connection.sink.data == b"a=1&b=x+y"
    assert connection.sink.closed
    assert connection.request_headers["content-type"] == (
        "application/x-www-form-urlencoded; charset=UTF-8"
    )
    assert response.status_code == 200
    assert not connection.disconnected


def test_send_without_body_skips_the_sink(connection):
    request = Request("GET", "http://example.com/", headers={"Accept": "text/html"})
    response = send(request, connection)

    assert response is not None
    assert not connection.sink_opened
    assert connection.content_length is None
    assert connection.request_headers["accept"] == "text/html"
    assert "content-type" not in connection.request_headers


def test_send_empty_body_declares_zero_length(connection):
    send(Request("POST", "http://example.com/"), connection)

    assert connection.content_length == 0
    assert not connection.sink_opened


@pytest.mark.parametrize("size", [0, 1, 16383])
def test_send_small_raw_body_in_memory(connection, size):
    body = os.urandom(size)
    send(Request("PUT", "http://example.com/", body=body), connection)

    assert connection.content_length == size
    assert connection.fixed_length is None
    assert connection.sink.data == body


def test_send_large_raw_body_with_fixed_length(connection):
    body = os.urandom(16384)
    send(Request("PUT", "http://example.com/", body=body), connection)

    assert connection.content_length is None
    assert connection.fixed_length == 16384
    assert connection.sink.data == body
    assert connection.sink.closed


@pytest.mark.parametrize("chunk_size", [0, 1024])
def test_send_chunked(connection, chunk_size):
    body = os.urandom(10000)
    request = Request(
        "POST",
        "http://example.com/",
        body=StreamPart(io.BytesIO(body)),
        settings=TransferSettings(chunk_size=chunk_size),
    )
    send(request, connection)

    assert connection.chunk_size == chunk_size
    assert connection.content_length is None
    assert connection.fixed_length is None
    assert connection.sink.data == body


def test_send_unknown_length_spills_to_temp_file(connection, temp_files):
    body = os.urandom(20000)
    request = Request("POST", "http://example.com/", body=StreamPart(io.BytesIO(body)))
    send(request, connection)

    assert connection.fixed_length == 20000
    assert connection.sink.data == body
    assert len(temp_files) == 1
    assert os.path.basename(temp_files[0]).startswith("request-buffer")
    assert temp_files[0].endswith(".http")
    assert not os.path.exists(temp_files[0])


def test_send_large_multipart_spills_to_temp_file(connection, temp_files):
    request = Request("POST", "http://example.com/")
    request.add_part("file", b"x" * 20000, filename="x.bin")
    send(request, connection)

    content_type = connection.request_headers["content-type"]
    assert content_type.startswith("multipart/form-data; boundary=")
    boundary = content_type.split("boundary=")[1].encode()
    assert connection.fixed_length == len(connection.sink.data)
    assert connection.sink.data.startswith(b"--" + boundary + b"\r\n")
    assert connection.sink.data.endswith(b"--" + boundary + b"--\r\n")
    assert not os.path.exists(temp_files[0])


def test_abort_before_send_writes_nothing(connection):
    abort = threading.Event()
    abort.set()
    request = Request("POST", "http://example.com/", fields={"a": "1"})

    assert send(request, connection, abort=abort) is None
    assert connection.sink.data == b""
    assert connection.disconnected


def test_abort_while_spilling_removes_temp_file(connection, temp_files):
    abort = threading.Event()

    class AbortingPart(DynamicPart):
        def write_to(self, sink, charset, abort_event):
            sink.write(b"x" * 100)
            abort.set()
            sink.write(b"y" * 100)

    request = Request("POST", "http://example.com/", body=AbortingPart())

    assert send(request, connection, abort=abort) is None
    assert not connection.sink_opened
    assert connection.disconnected
    assert not os.path.exists(temp_files[0])


def test_abort_after_chunks_written():
    abort = threading.Event()
    body = os.urandom(4096 * 5)

    class AbortingSink(FakeSink):
        def write(self, data):
            super().write(data)
            if len(self.writes) == 2:
                abort.set()
            return len(data)

    connection = FakeConnection(sink=AbortingSink())
    request = Request(
        "POST",
        "http://example.com/",
        body=StreamPart(io.BytesIO(body)),
        settings=TransferSettings(chunk_size=0),
    )

    assert send(request, connection, abort=abort) is None
    assert connection.sink.data == body[: 4096 * 2]
    assert not connection.sink.closed
    assert connection.disconnected


def test_write_failure_raises_transfer_error(temp_files):
    connection = FakeConnection(sink=FakeSink(fail_after=1))
    body = StreamPart(io.BytesIO(b"x" * 10000))
    request = Request("POST", "http://example.com/", body=body)

    with pytest.raises(ferry.TransferError) as e:
        send(request, connection)

    assert isinstance(e.value.error, BrokenPipeError)
    assert e.value.request is request
    assert connection.disconnected
    assert not os.path.exists(temp_files[0])


def test_body_and_fields_rejected_before_any_io(connection):
    request = Request("POST", "http://example.com/", body=b"data", fields={"a": "1"})

    with pytest.raises(ferry.ConfigurationError):
        send(request, connection)

    assert not connection.request_headers
    assert not connection.sink_opened


def test_unsupported_charset_rejected_before_any_io(connection):
    request = Request(
        "POST",
        "http://example.com/",
        fields={"a": "1"},
        headers={"Content-Type": "application/x-www-form-urlencoded; charset=nope"},
    )

    with pytest.raises(ferry.UnsupportedCharset):
        send(request, connection)

    assert not connection.request_headers


def test_request_progress_reports_known_total(connection, progress):
    request = Request("PUT", "http://example.com/", body=b"x" * 10000)
    send(request, connection, progress=progress)

    assert progress.sent[0] == (0, 10000)
    assert progress.sent[-1] == (10000, 10000)
    assert [sent for sent, _ in progress.sent] == [0, 4096, 8192, 10000]


def test_request_progress_chunked_total_unknown(connection, progress):
    request = Request(
        "PUT",
        "http://example.com/",
        body=b"x" * 100,
        settings=TransferSettings(chunk_size=0),
    )
    send(request, connection, progress=progress)

    assert progress.sent == [(0, UNKNOWN_LENGTH), (100, UNKNOWN_LENGTH)]


def test_request_progress_without_body(connection, progress):
    send(Request("GET", "http://example.com/"), connection, progress=progress)

    assert progress.sent == [(0, UNKNOWN_LENGTH)]


def test_request_progress_empty_body(connection, progress):
    send(Request("POST", "http://example.com/"), connection, progress=progress)

    assert progress.sent == [(0, 0)]


def test_response_keeps_auto_decompress_setting(connection):
    request = Request(
        "GET", "http://example.com/", settings=TransferSettings(auto_decompress=False)
    )
    response = send(request, connection)

    assert response.auto_decompress is False
    assert response.request is request


def test_write_request_body():
    request = Request("POST", "http://example.com/", fields={"a": "1", "b": "x y"})
    sink = io.BytesIO()

    content_type = ferry.write_request_body(request, sink)

    assert content_type == "application/x-www-form-urlencoded; charset=UTF-8"
    assert sink.getvalue() == b"a=1&b=x+y"


def test_write_request_body_without_body():
    sink = io.BytesIO()
    assert ferry.write_request_body(Request("GET", "http://example.com/"), sink) is None
    assert sink.getvalue() == b""


def test_repeated_headers_keep_every_value(connection):
    request = Request(
        "GET",
        "http://example.com/",
        headers=[("Accept", "text/html"), ("X-Tag", "a"), ("accept", "text/plain")],
    )
    send(request, connection)

    assert connection.request_headers.get_all("accept") == ["text/html", "text/plain"]
    assert connection.request_headers.get_all("x-tag") == ["a"]


def test_body_content_type_replaces_the_header(connection):
    request = Request(
        "POST", "http://example.com/", headers={"Content-Type": "multipart/form-data"}
    )
    request.add_part("a", b"1")
    send(request, connection)

    content_types = connection.request_headers.get_all("content-type")
    assert len(content_types) == 1
    assert content_types[0].startswith("multipart/form-data; boundary=")


def test_missing_file_part_disconnects(connection, tmp_path):
    request = Request("POST", "http://example.com/")
    request.add_part("f", tmp_path / "gone.bin")

    with pytest.raises(ferry.TransferError) as e:
        send(request, connection)

    assert isinstance(e.value.error, FileNotFoundError)
    assert e.value.request is request
    assert connection.disconnected
    assert not connection.sink_opened


def test_unencodable_field_disconnects(connection):
    request = Request(
        "POST",
        "http://example.com/",
        fields={"name": "Ωmega"},
        headers={"Content-Type": "application/x-www-form-urlencoded; charset=ascii"},
    )

    with pytest.raises(ferry.ConfigurationError) as e:
        send(request, connection)

    assert isinstance(e.value.error, UnicodeEncodeError)
    assert connection.disconnected
    assert not connection.sink_opened
