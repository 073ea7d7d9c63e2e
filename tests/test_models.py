import io
import pathlib

import pytest
from PIL import Image

import ferry
from ferry import (
    BytesPart,
    FilePart,
    Headers,
    ImagePart,
    Request,
    StreamPart,
    TextPart,
    TransferSettings,
)
from ferry.decoders import accept_encoding
from ferry.parts import as_part


@pytest.mark.parametrize(
    "url",
    [
        "example.com/path",
        "/relative",
        "ftp://example.com/",
        "http://",
        "http://example.com:0/",
        "http://example.com:99999/",
    ],
)
def test_invalid_urls(url):
    with pytest.raises(ferry.URLError):
        Request("GET", url)


def test_url_error_is_configuration_error():
    assert issubclass(ferry.URLError, ferry.ConfigurationError)
    assert issubclass(ferry.UnsupportedCharset, ferry.ConfigurationError)
    assert issubclass(ferry.BufferingError, ferry.TransferError)
    assert issubclass(ferry.TransferError, ferry.FerryError)


def test_method_is_upper_cased():
    assert Request("post", "http://example.com").method == "POST"


@pytest.mark.parametrize(
    ["url", "host", "target"],
    [
        ("http://example.com", "example.com", "/"),
        ("https://user:pw@example.com:8443/a/b?c=d", "example.com:8443", "/a/b?c=d"),
        ("http://[::1]:8080/x", "[::1]:8080", "/x"),
    ],
)
def test_host_and_target(url, host, target):
    request = Request("GET", url)

    assert request.host == host
    assert request.target == target


def test_fields_go_into_query_without_body():
    request = Request("GET", "http://example.com/search?q=1", fields={"a": "x y"})
    assert request.target == "/search?q=1&a=x+y"


def test_fields_stay_out_of_query_with_body():
    request = Request("POST", "http://example.com/search", fields={"a": "x y"})
    assert request.target == "/search"


def test_headers_are_case_insensitive():
    headers = Headers([(b"Content-Type", b"text/plain"), ("X-A", "1"), ("x-a", "2")])

    assert headers["content-type"] == "text/plain"
    assert headers.get_all("X-a") == ["1", "2"]
    assert list(headers.keys()) == ["content-type", "x-a"]
    assert len(headers) == 3


def test_charset_from_content_type():
    request = Request(
        "POST",
        "http://example.com/",
        headers={"Content-Type": "application/json; charset=utf-16"},
    )
    assert request.charset == "utf-16"


def test_charset_from_settings():
    request = Request(
        "POST", "http://example.com/", settings=TransferSettings(charset="latin-1")
    )
    assert request.charset == "latin-1"


def test_unsupported_charset():
    request = Request(
        "POST", "http://example.com/", settings=TransferSettings(charset="klingon")
    )
    with pytest.raises(ferry.UnsupportedCharset):
        request.charset


def test_body_and_fields_are_exclusive():
    request = Request("POST", "http://example.com/", body=b"data")
    request.check()

    request.add_field("a", "1")
    with pytest.raises(ferry.ConfigurationError):
        request.check()


def test_needs_multipart():
    request = Request("POST", "http://example.com/", fields={"a": "1", "b": 2})
    assert not request.needs_multipart

    request.add_field("c", b"bytes")
    assert request.needs_multipart


def test_add_part_overrides():
    request = Request("POST", "http://example.com/")
    request.add_part(
        "a", b"data", filename="a.csv", content_type="text/csv", charset="latin-1"
    )
    part = request.parts["a"]

    assert isinstance(part, BytesPart)
    assert part.filename == "a.csv"
    assert part.effective_content_type() == "text/csv"
    assert part.charset == "latin-1"


def test_accept_compressed():
    request = Request("GET", "http://example.com/").accept_compressed()

    assert request.headers["accept-encoding"] == accept_encoding()
    assert request.headers["accept-encoding"].startswith("gzip, deflate")


def test_settings_replace():
    settings = TransferSettings()
    chunked = settings._replace(chunk_size=0)

    assert settings.chunk_size is None
    assert chunked.chunk_size == 0
    assert chunked.charset == "UTF-8"


def test_as_part(tmp_path):
    path = tmp_path / "file.txt"
    path.write_bytes(b"hello")
    image = Image.new("RGB", (1, 1))

    assert isinstance(as_part("text"), TextPart)
    assert isinstance(as_part(42), TextPart)
    assert isinstance(as_part(b"bytes"), BytesPart)
    assert isinstance(as_part(bytearray(b"bytes")), BytesPart)
    assert isinstance(as_part(path), FilePart)
    assert isinstance(as_part(image), ImagePart)
    assert isinstance(as_part(io.BytesIO(b"")), StreamPart)

    part = TextPart("text")
    assert as_part(part) is part


def test_stream_part_takes_file_name():
    with open(__file__, "rb") as f:
        part = as_part(f)

    assert isinstance(part, StreamPart)
    assert part.filename == pathlib.Path(__file__).name
    assert part.content_length is None


def test_file_part(tmp_path):
    path = tmp_path / "data.csv"
    path.write_bytes(b"a,b\n1,2\n")
    part = FilePart(path)

    assert part.filename == "data.csv"
    assert part.content_length == 8
    assert part.guess_content_type() == "text/csv"
    with part.open() as f:
        assert f.read() == b"a,b\n1,2\n"


@pytest.mark.parametrize(
    ["mode", "info", "has_alpha"],
    [
        ("RGB", {}, False),
        ("L", {}, False),
        ("RGBA", {}, True),
        ("LA", {}, True),
        ("P", {}, False),
        ("P", {"transparency": 0}, True),
    ],
)
def test_image_part_alpha(mode, info, has_alpha):
    image = Image.new(mode, (1, 1))
    image.info.update(info)
    part = ImagePart(image)

    assert part.has_alpha is has_alpha
    assert part.image_format == ("PNG" if has_alpha else "JPEG")
    assert part.effective_content_type() == (
        "image/png" if has_alpha else "image/jpeg"
    )
