"""Decoders for the Content-Encodings we can undo"""
import enum
import functools
import io
import types
import typing
import zlib

from .exceptions import TransferError
from .utils import CHUNK_SIZE

brotli: typing.Optional[types.ModuleType]
zstandard: typing.Optional[types.ModuleType]
try:
    import brotli
except ImportError:
    brotli = None

try:
    import zstandard
except ImportError:
    zstandard = None

DECODING_ERRORS: typing.Tuple[typing.Type[Exception], ...] = (zlib.error,)
if brotli is not None:
    DECODING_ERRORS += (brotli.error,)
if zstandard is not None:
    DECODING_ERRORS += (zstandard.ZstdError,)


class Decoder:
    def decompress(self, data: bytes) -> bytes:
        raise NotImplementedError()

    def flush(self) -> bytes:
        raise NotImplementedError()


class DeflateDecoder(Decoder):
    """Servers send both zlib-wrapped and raw deflate streams
    as 'deflate' so try the former and fall back to the latter.
    """

    def __init__(self) -> None:
        self._first_try = True
        self._data = bytearray()
        self._obj = zlib.decompressobj()

    def decompress(self, data: bytes) -> bytes:
        if not data:
            return data

        if not self._first_try:
            return self._obj.decompress(data)

        self._data += data
        try:
            decompressed = self._obj.decompress(data)
            if decompressed:
                self._first_try = False
                self._data = bytearray()
            return decompressed
        except zlib.error:
            self._first_try = False
            self._obj = zlib.decompressobj(-zlib.MAX_WBITS)
            data = bytes(self._data)
            self._data = bytearray()
            return self.decompress(data)

    def flush(self) -> bytes:
        return self._obj.flush()


class GzipDecoderState(enum.Enum):
    FIRST_MEMBER = 0
    OTHER_MEMBERS = 1
    SWALLOW_DATA = 2


class GzipDecoder(Decoder):
    def __init__(self) -> None:
        self._obj = zlib.decompressobj(16 + zlib.MAX_WBITS)
        self._state = GzipDecoderState.FIRST_MEMBER

    def decompress(self, data: bytes) -> bytes:
        ret = bytearray()
        if self._state == GzipDecoderState.SWALLOW_DATA or not data:
            return bytes(ret)
        while True:
            try:
                ret += self._obj.decompress(data)
            except zlib.error:
                previous_state = self._state
                # Ignore data after the first error
                self._state = GzipDecoderState.SWALLOW_DATA
                if previous_state == GzipDecoderState.OTHER_MEMBERS:
                    # Allow trailing garbage acceptable in other gzip clients
                    return bytes(ret)
                raise
            data = self._obj.unused_data
            if not data:
                return bytes(ret)
            self._state = GzipDecoderState.OTHER_MEMBERS
            self._obj = zlib.decompressobj(16 + zlib.MAX_WBITS)

    def flush(self) -> bytes:
        return self._obj.flush()


if brotli is not None:

    class BrotliDecoder(Decoder):
        def __init__(self) -> None:
            self._obj = brotli.Decompressor()

        def decompress(self, data: bytes) -> bytes:
            if hasattr(self._obj, "decompress"):
                return self._obj.decompress(data)
            return self._obj.process(data)

        def flush(self) -> bytes:
            if hasattr(self._obj, "flush"):
                return self._obj.flush()
            return b""


if zstandard is not None:

    class ZstdDecoder(Decoder):
        def __init__(self) -> None:
            self._obj = zstandard.ZstdDecompressor().decompressobj()

        def decompress(self, data: bytes) -> bytes:
            return self._obj.decompress(data)

        def flush(self) -> bytes:
            return self._obj.flush() or b""


class MultiDecoder(Decoder):
    """
    From RFC7231:
        If one or more encodings have been applied to a representation, the
        sender that applied the encodings MUST generate a Content-Encoding
        header field that lists the content codings in the order in which
        they were applied.
    """

    def __init__(self, content_encoding: str) -> None:
        decoders = [get_content_decoder(m.strip()) for m in content_encoding.split(",")]
        self._decoders = [d for d in decoders if d is not None][::-1]

    def decompress(self, data: bytes) -> bytes:
        for d in self._decoders:
            data = d.decompress(data)
        return data

    def flush(self) -> bytes:
        data = b""
        for d in self._decoders:
            if data:
                data = d.decompress(data)
            data += d.flush()
        return data


def get_content_decoder(
    content_encoding: typing.Optional[str],
) -> typing.Optional[Decoder]:
    """Returns a decoder for the 'Content-Encoding' or 'None' when the
    body should be passed through as-is, either because there is no
    encoding or because we don't know how to undo it.
    """
    content_encoding = (content_encoding or "").strip().lower()
    if "," in content_encoding:
        encodings = [m.strip() for m in content_encoding.split(",")]
        if all(_is_supported(m) for m in encodings):
            return MultiDecoder(content_encoding)
        return None
    if content_encoding in ("gzip", "x-gzip"):
        return GzipDecoder()
    if content_encoding in ("deflate", "x-deflate"):
        return DeflateDecoder()
    if brotli is not None and content_encoding == "br":
        return BrotliDecoder()
    if zstandard is not None and content_encoding == "zstd":
        return ZstdDecoder()
    return None


def _is_supported(content_encoding: str) -> bool:
    return content_encoding in ("identity", "") or (
        get_content_decoder(content_encoding) is not None
    )


@functools.lru_cache(1)
def accept_encoding() -> str:
    """Returns the value of 'Accept-Encoding' that the client should use.
    This value varies depending on what packages are installed.
    """
    accept_enc = ["gzip", "deflate"]
    if brotli is not None:
        accept_enc.append("br")
    if zstandard is not None:
        accept_enc.append("zstd")
    return ", ".join(accept_enc)


class DecodingReader(io.RawIOBase):
    """Reads from a binary file-like object and undoes
    the Content-Encoding on the way out.
    """

    def __init__(self, raw: typing.BinaryIO, decoder: Decoder) -> None:
        self._raw = raw
        self._decoder = decoder
        self._buffer = bytearray()
        self._eof = False

    def readable(self) -> bool:
        return True

    def readinto(self, b: typing.Any) -> int:
        while not self._buffer and not self._eof:
            data = self._raw.read(CHUNK_SIZE)
            try:
                if data:
                    self._buffer += self._decoder.decompress(data)
                else:
                    self._eof = True
                    self._buffer += self._decoder.flush()
            except DECODING_ERRORS as e:
                raise TransferError(
                    f"couldn't decode the response body: {e}", error=e
                ) from e
        n = min(len(b), len(self._buffer))
        b[:n] = self._buffer[:n]
        del self._buffer[:n]
        return n

    def close(self) -> None:
        if not self.closed:
            try:
                self._raw.close()
            finally:
                super().close()
