"""The kinds of data that can make up a request body.

A field, a multipart part and a raw body are all described by
one 'PartSource'. The set of kinds is closed except for
'DynamicPart' which callers subclass to generate data on the fly.
"""
import io
import mimetypes
import os
import pathlib
import threading
import typing

import filetype
from PIL import Image

from .utils import CHUNK_SIZE, param_to_string

PathType = typing.Union[str, pathlib.Path]

OCTET_STREAM = "application/octet-stream"
TEXT_PLAIN = "text/plain"
IMAGE_JPEG = "image/jpeg"
IMAGE_PNG = "image/png"


class PartSource:
    """Data for a single field, part or request body. 'content_length'
    is 'None' when the length can't be known without consuming the data.
    """

    default_content_type = OCTET_STREAM

    def __init__(
        self,
        *,
        content_type: typing.Optional[str] = None,
        filename: typing.Optional[str] = None,
        charset: typing.Optional[str] = None,
    ):
        self.content_type = content_type
        self.filename = filename
        self.charset = charset

    @property
    def content_length(self) -> typing.Optional[int]:
        return None

    def effective_content_type(self) -> str:
        return self.content_type or self.default_content_type

    def __repr__(self) -> str:
        return f"<{type(self).__name__} length={self.content_length!r}>"


class TextPart(PartSource):
    """A scalar form value. Rendered as text and encoded
    with the request charset when written.
    """

    default_content_type = TEXT_PLAIN

    def __init__(self, value: typing.Any, **kwargs: typing.Any):
        super().__init__(**kwargs)
        self.text = param_to_string(value)

    def encode(self, charset: str) -> bytes:
        return self.text.encode(self.charset or charset)

    def __repr__(self) -> str:
        return f"<TextPart {self.text!r}>"


class BytesPart(PartSource):
    """Class representing the simplest data-type, just bytes."""

    def __init__(
        self, data: typing.Union[bytes, bytearray, memoryview], **kwargs: typing.Any
    ):
        super().__init__(**kwargs)
        self.data = bytes(data)

    @property
    def content_length(self) -> int:
        return len(self.data)


class FilePart(PartSource):
    """A file on disk. It's opened when the body is written
    and closed right after.
    """

    def __init__(self, path: PathType, **kwargs: typing.Any):
        super().__init__(**kwargs)
        self.path = pathlib.Path(path)
        if self.filename is None:
            self.filename = self.path.name

    @property
    def content_length(self) -> int:
        return self.path.stat().st_size

    def guess_content_type(self) -> str:
        """Guesses the type from the file's leading bytes and then
        from the name of the file as a last-ditch effort.
        """
        if self.content_type:
            return self.content_type
        with self.path.open("rb") as f:
            content_type = filetype.guess_mime(f.read(CHUNK_SIZE))
        if content_type is None:
            content_type, _ = mimetypes.guess_type(self.path.name, strict=False)
        return content_type or self.default_content_type

    def open(self) -> typing.BinaryIO:
        return self.path.open("rb")


class StreamPart(PartSource):
    """A live binary stream that's read until exhausted. Unless a
    length is declared up front the length is unknown.
    """

    def __init__(
        self,
        stream: typing.BinaryIO,
        content_length: typing.Optional[int] = None,
        **kwargs: typing.Any,
    ):
        super().__init__(**kwargs)
        self.stream = stream
        self._content_length = content_length

    @property
    def content_length(self) -> typing.Optional[int]:
        return self._content_length


class ImagePart(PartSource):
    """An in-memory image which gets encoded as PNG if it has
    an alpha channel and as JPEG otherwise.
    """

    def __init__(
        self,
        image: Image.Image,
        content_length: typing.Optional[int] = None,
        **kwargs: typing.Any,
    ):
        super().__init__(**kwargs)
        self.image = image
        self._content_length = content_length

    @property
    def content_length(self) -> typing.Optional[int]:
        return self._content_length

    @property
    def has_alpha(self) -> bool:
        return self.image.mode in ("RGBA", "LA", "PA") or (
            self.image.mode == "P" and "transparency" in self.image.info
        )

    @property
    def image_format(self) -> str:
        return "PNG" if self.has_alpha else "JPEG"

    @property
    def default_content_type(self) -> str:  # type: ignore[override]
        return IMAGE_PNG if self.has_alpha else IMAGE_JPEG


class DynamicPart(PartSource):
    """Subclass to generate part data on the fly, for example to
    stream something too large to hold in memory.

    If 'content_length' is not 'None' it must be exactly the number of
    bytes 'write_to()' writes as it's trusted without verification.
    Return 'None' and the body is spooled to a temporary file first
    in order to learn its length.
    """

    def write_to(
        self, sink: typing.BinaryIO, charset: str, abort: threading.Event
    ) -> None:
        """Writes the part data to 'sink'. When 'abort' is set it's
        safe to stop writing at any point.
        """
        raise NotImplementedError()


def as_part(value: typing.Any) -> PartSource:
    """Wraps a plain value in the matching 'PartSource'.
    'str' values are always text, use a 'pathlib.Path' to send a file.
    """
    if isinstance(value, PartSource):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return BytesPart(value)
    if isinstance(value, pathlib.PurePath):
        return FilePart(value)
    if isinstance(value, Image.Image):
        return ImagePart(value)
    if isinstance(value, io.IOBase) or hasattr(value, "read"):
        return StreamPart(value, filename=_stream_filename(value))
    return TextPart(value)


def _stream_filename(stream: typing.Any) -> typing.Optional[str]:
    name = getattr(stream, "name", None)
    if isinstance(name, str) and name:
        return os.path.basename(name)
    return None
