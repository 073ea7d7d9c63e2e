import io
import logging
import threading
import typing

from .models import MULTIPART_FORM_DATA, Fields, FieldsType, Request, TransferSettings
from .parts import (
    BytesPart,
    DynamicPart,
    FilePart,
    ImagePart,
    PartSource,
    StreamPart,
    TextPart,
)
from .progress import AbortableSink, AbortTransfer
from .utils import CHUNK_SIZE, choose_boundary, form_urlencode, parse_mimetype

log = logging.getLogger(__name__)

CRLF = b"\r\n"


def write_part_data(
    part: PartSource,
    sink: typing.BinaryIO,
    charset: str,
    settings: TransferSettings,
    abort: threading.Event,
) -> None:
    """Writes the payload of a single part, field value or raw body."""
    if isinstance(part, TextPart):
        data = part.encode(charset)
        if data:
            sink.write(data)
    elif isinstance(part, BytesPart):
        if part.data:
            sink.write(part.data)
    elif isinstance(part, FilePart):
        with part.open() as f:
            _copy_stream(f, sink, abort)
    elif isinstance(part, StreamPart):
        _copy_stream(part.stream, sink, abort)
    elif isinstance(part, ImagePart):
        _write_image(part, sink, settings)
    elif isinstance(part, DynamicPart):
        part.write_to(sink, part.charset or charset, abort)
    else:
        raise TypeError(f"can't write part of type '{type(part).__name__}'")


def _copy_stream(
    source: typing.BinaryIO, sink: typing.BinaryIO, abort: threading.Event
) -> None:
    while True:
        if abort.is_set():
            raise AbortTransfer()
        data = source.read(CHUNK_SIZE)
        if not data:
            break
        sink.write(data)


def _write_image(
    part: ImagePart, sink: typing.BinaryIO, settings: TransferSettings
) -> None:
    image = part.image
    if part.image_format == "PNG":
        image.save(sink, format="PNG")
    else:
        if image.mode not in ("RGB", "L", "CMYK"):
            image = image.convert("RGB")
        image.save(sink, format="JPEG", quality=settings.jpeg_quality)
    if settings.dispose_images:
        part.image.close()


class MultipartEnvelope:
    """Implements multipart/form-data over a list of '(name, part)' entries"""

    def __init__(
        self,
        entries: typing.Iterable[typing.Tuple[str, PartSource]],
        boundary: typing.Optional[str] = None,
    ):
        self.entries = list(entries)
        self.boundary = boundary or choose_boundary()

    @classmethod
    def from_request(
        cls, request: Request, boundary: typing.Optional[str] = None
    ) -> "MultipartEnvelope":
        """Fields first, then the explicit parts"""
        return cls(
            list(request.fields.items()) + list(request.parts.items()), boundary
        )

    @property
    def content_type(self) -> str:
        return f"{MULTIPART_FORM_DATA}; boundary={self.boundary}"

    def render_part_headers(
        self, name: str, part: PartSource, charset: str, settings: TransferSettings
    ) -> bytes:
        """Renders the headers of one part including the empty line after them."""
        disposition = b'Content-Disposition: form-data; name="%b"' % form_urlencode(
            name, charset
        )
        if part.filename:
            disposition += b'; filename="%b"' % form_urlencode(
                part.filename.replace('"', ""), charset
            )

        if settings.guess_content_types and isinstance(part, FilePart):
            content_type = part.guess_content_type()
        else:
            content_type = part.effective_content_type()
        content_type_line = (
            f"Content-Type: {content_type}; charset={part.charset or charset}"
        ).encode("latin-1")

        return disposition + CRLF + content_type_line + CRLF + CRLF

    def write_to(
        self,
        sink: typing.BinaryIO,
        charset: str,
        settings: TransferSettings,
        abort: threading.Event,
    ) -> None:
        boundary_line = b"--%b" % self.boundary.encode("latin-1")
        for name, part in self.entries:
            if abort.is_set():
                raise AbortTransfer()
            sink.write(boundary_line + CRLF)
            sink.write(self.render_part_headers(name, part, charset, settings))
            write_part_data(part, sink, charset, settings, abort)
            sink.write(CRLF)
        sink.write(boundary_line + b"--" + CRLF)


class BodyEncoder:
    """Serializes the body of a Request in one of three shapes:
    the raw body as-is, fields as a url-encoded (or plain text) form,
    or fields and parts as multipart/form-data.

    Every write checks the abort event first. Once it's set
    'write_to()' stops and returns without raising so callers
    must check the event to tell an aborted body from a complete one.
    """

    def __init__(
        self,
        request: Request,
        *,
        boundary: typing.Optional[str] = None,
        abort: typing.Optional[threading.Event] = None,
    ):
        self.request = request
        self.settings = request.settings
        self.charset = request.charset
        self.abort = abort or threading.Event()

        self.multipart: typing.Optional[MultipartEnvelope] = None
        if request.needs_multipart:
            custom = parse_mimetype(request.custom_content_type)
            if str(custom) == MULTIPART_FORM_DATA:
                boundary = boundary or custom.parameters.get("boundary")
            self.multipart = MultipartEnvelope.from_request(request, boundary)

    @property
    def content_type(self) -> typing.Optional[str]:
        """The Content-Type to send along with the body. A Content-Type
        the caller set always wins except for a multipart one missing
        its boundary.
        """
        custom = self.request.custom_content_type
        if self.multipart is not None:
            if custom is None:
                return self.multipart.content_type
            mimetype = parse_mimetype(custom)
            if str(mimetype) == MULTIPART_FORM_DATA and not mimetype.parameters.get(
                "boundary"
            ):
                return f"{custom.rstrip('; ')}; boundary={self.multipart.boundary}"
            return custom
        if custom is not None:
            return custom
        default = self.request.default_content_type
        if default is None:
            return None
        return f"{default}; charset={self.charset}"

    def write_to(self, sink: typing.BinaryIO) -> None:
        sink = typing.cast(typing.BinaryIO, AbortableSink(sink, self.abort))
        try:
            if self.request.body is not None:
                write_part_data(
                    self.request.body, sink, self.charset, self.settings, self.abort
                )
            elif self.multipart is not None:
                self.multipart.write_to(sink, self.charset, self.settings, self.abort)
            elif self.request.is_plain_text_form:
                self._write_form(sink, separator=CRLF, encode=False)
            else:
                self._write_form(sink, separator=b"&", encode=True)
        except AbortTransfer:
            log.debug("Stopped encoding the body of %r, aborted", self.request)

    def _write_form(
        self, sink: typing.BinaryIO, separator: bytes, encode: bool
    ) -> None:
        first = True
        for name, part in self.request.fields.items():
            if self.abort.is_set():
                raise AbortTransfer()
            if not first:
                sink.write(separator)
            first = False

            text = typing.cast(TextPart, part)
            charset = text.charset or self.charset
            if encode:
                sink.write(
                    form_urlencode(name, charset)
                    + b"="
                    + form_urlencode(text.text, charset)
                )
            else:
                sink.write(f"{name}={text.text}".encode(charset))


def encode_multipart_formdata(
    fields: FieldsType,
    boundary: typing.Optional[str] = None,
    *,
    charset: str = "UTF-8",
    settings: typing.Optional[TransferSettings] = None,
) -> typing.Tuple[bytes, str]:
    """Encodes 'fields' as multipart/form-data in memory.
    Returns the body and the Content-Type to send it with.
    """
    envelope = MultipartEnvelope(Fields(fields).items(), boundary)
    body = io.BytesIO()
    envelope.write_to(body, charset, settings or TransferSettings(), threading.Event())
    return body.getvalue(), envelope.content_type
