import contextlib
import typing

from .exceptions import TransferError
from .models import Headers

if typing.TYPE_CHECKING:
    from .models import Request
    from .response import Response


@contextlib.contextmanager
def wrap_io_errors(
    request: typing.Optional["Request"] = None,
    response: typing.Optional["Response"] = None,
) -> typing.Iterator[None]:
    """Re-raises 'OSError' from sinks, sources and temporary
    files as 'TransferError' with the original attached.
    """
    try:
        yield
    except OSError as e:
        raise TransferError(
            f"transfer failed: {e}", request=request, response=response, error=e
        ) from e


class Connection:
    """An HTTP exchange that's already set up for one request: the
    method and target are chosen and the transport is connected.
    The transfer pipeline only adds headers, picks how the body
    length is framed, writes the body and reads the response.

    'open_output_sink()' returns an object with 'write(bytes)' and
    'close()', closing it completes the request. 'open_input_source()'
    returns an object with 'read(n)' and 'close()'.
    """

    def add_request_header(self, name: str, value: str) -> None:
        """Adds a header, keeping any values already added under 'name'."""
        raise NotImplementedError()

    def set_request_header(self, name: str, value: str) -> None:
        """Adds a header in place of all values already added under 'name'."""
        raise NotImplementedError()

    def set_content_length(self, content_length: int) -> None:
        """Declares the exact length of a body that's already been encoded."""
        raise NotImplementedError()

    def enable_fixed_length_mode(self, content_length: int) -> None:
        """Declares the exact length of a body that will be streamed."""
        raise NotImplementedError()

    def enable_chunked_mode(self, chunk_size: int) -> None:
        """Sends the body with 'Transfer-Encoding: chunked' in chunks
        of at most 'chunk_size' bytes, 0 uses the connection's default.
        """
        raise NotImplementedError()

    def open_output_sink(self) -> typing.BinaryIO:
        raise NotImplementedError()

    def status_code(self) -> int:
        raise NotImplementedError()

    def status_message(self) -> str:
        raise NotImplementedError()

    def response_headers(self) -> Headers:
        raise NotImplementedError()

    def open_input_source(self) -> typing.BinaryIO:
        raise NotImplementedError()

    def disconnect(self) -> None:
        """Releases the connection. Calling this more than once is fine."""
        raise NotImplementedError()
