import atexit
import codecs
import datetime
import functools
import os
import secrets
import tempfile
import threading
import typing

import chardet

# Size of every read from a file, stream, temp file or socket.
CHUNK_SIZE = 4096

BOUNDARY_CHARS = "-_1234567890abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
TEMP_FILE_SUFFIX = ".http"

HTTP_DATE_FORMATS = (
    "%a, %d %b %Y %H:%M:%S %Z",  # RFC 1123
    "%A, %d-%b-%y %H:%M:%S %Z",  # RFC 1036
    "%a %b %d %H:%M:%S %Y",  # asctime()
)


def _int_to_urlenc() -> typing.Dict[int, bytes]:
    """Creates a mapping of ordinals to bytes encoded via url-encoding"""
    values = {}
    special = {0x2A, 0x2D, 0x2E, 0x5F}
    for byte in range(256):
        if (
            (0x61 <= byte <= 0x7A)
            or (0x41 <= byte <= 0x5A)
            or (0x30 <= byte <= 0x39)
            or (byte in special)
        ):  # Keep the ASCII
            values[byte] = bytes((byte,))
        elif byte == 0x20:  # Space -> '+'
            values[byte] = b"+"
        else:  # Percent-encoded
            values[byte] = b"%" + hex(byte)[2:].upper().zfill(2).encode()
    return values


INT_TO_URLENC = _int_to_urlenc()


def form_urlencode(value: str, charset: str) -> bytes:
    """Percent-encodes a string the way HTML forms do after
    encoding it with the given charset.
    """
    return b"".join([INT_TO_URLENC[byte] for byte in value.encode(charset)])


def param_to_string(value: typing.Any) -> str:
    """Renders a field value as text. Booleans are lower-case
    like in JSON and 'None' renders as an empty value.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class MimeType(typing.NamedTuple):
    type: str
    subtype: str
    suffix: str
    parameters: typing.Dict[str, typing.Optional[str]]

    def __str__(self) -> str:
        """Renders the mime type without parameters"""
        if not self.type:
            return ""
        return (
            f"{self.type}"
            f"{'/' + self.subtype if self.subtype else ''}"
            f"{'+' + self.suffix if self.suffix else ''}"
        )


def parse_mimetype(mimetype: typing.Optional[str]) -> MimeType:
    if not mimetype:
        return MimeType(type="", subtype="", suffix="", parameters={})

    parts = mimetype.split(";")
    params = {}
    for item in parts[1:]:
        if not item.strip():
            continue
        key, value = typing.cast(
            typing.Tuple[str, typing.Optional[str]],
            item.split("=", 1) if "=" in item else (item, None),
        )
        params[key.lower().strip()] = value.strip(' "') if value else value

    mimetype_no_params = parts[0].strip().lower()
    if mimetype_no_params == "*":
        mimetype_no_params = "*/*"

    type, subtype = typing.cast(
        typing.Tuple[str, str],
        mimetype_no_params.split("/", 1)
        if "/" in mimetype_no_params
        else (mimetype_no_params, ""),
    )
    subtype, suffix = typing.cast(
        typing.Tuple[str, str],
        subtype.split("+", 1) if "+" in subtype else (subtype, ""),
    )
    return MimeType(type=type, subtype=subtype, suffix=suffix, parameters=params)


def parse_header_params(header: typing.Optional[str]) -> typing.Dict[str, str]:
    """Parses the 'name=value' parameters that follow the first ';'
    of a header value. Names keep their case, empty values are
    dropped and a single layer of double quotes is removed.
    """
    params: typing.Dict[str, str] = {}
    if not header:
        return params
    for item in header.split(";")[1:]:
        if "=" not in item:
            continue
        name, value = item.split("=", 1)
        name, value = name.strip(), value.strip()
        if not name or not value:
            continue
        if len(value) > 2 and value[0] == value[-1] == '"':
            value = value[1:-1]
        params[name] = value
    return params


def parse_http_date(value: typing.Optional[str]) -> typing.Optional[datetime.datetime]:
    """Parses any of the three date formats allowed by HTTP/1.1.
    Returns 'None' if the value can't be parsed.
    """
    if not value:
        return None
    for date_format in HTTP_DATE_FORMATS:
        try:
            parsed = datetime.datetime.strptime(value.strip(), date_format)
        except ValueError:
            continue
        return parsed.replace(tzinfo=datetime.timezone.utc)
    return None


@functools.lru_cache(128)
def is_known_encoding(encoding: str) -> typing.Optional[str]:
    """Given an encoding type, return either it's normalized name
    if we understand the codec otherwise return 'None'.
    """
    try:
        return codecs.lookup(encoding).name
    except LookupError:
        return None


def encoding_detector() -> chardet.UniversalDetector:
    return chardet.UniversalDetector()


def choose_boundary() -> str:
    """Random multipart boundary of 30 to 40 characters.
    Long enough that it won't ever show up within a part.
    """
    length = 30 + secrets.randbelow(11)
    return "".join(secrets.choice(BOUNDARY_CHARS) for _ in range(length))


_temp_files: typing.Set[str] = set()
_temp_files_lock = threading.Lock()


def create_temp_file(prefix: str) -> typing.Tuple[int, str]:
    """Creates a temporary file that is removed at interpreter
    exit if nothing removes it earlier. Returns '(fd, path)'.
    """
    fd, path = tempfile.mkstemp(prefix=prefix, suffix=TEMP_FILE_SUFFIX)
    with _temp_files_lock:
        _temp_files.add(path)
    return fd, path


def remove_temp_file(path: str) -> None:
    with _temp_files_lock:
        _temp_files.discard(path)
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


@atexit.register
def _remove_leftover_temp_files() -> None:
    for path in list(_temp_files):
        try:
            remove_temp_file(path)
        except OSError:
            pass
