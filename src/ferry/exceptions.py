import typing

if typing.TYPE_CHECKING:
    from .models import Request
    from .response import Response


class FerryError(Exception):
    """Base error type for 'ferry' which may carry the Request
    being transferred, the Response if one was received, and
    the encapsulated error if this error wraps a different exception.
    """

    def __init__(
        self,
        message: str,
        request: typing.Optional["Request"] = None,
        response: typing.Optional["Response"] = None,
        error: typing.Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.request = request
        self.response = response
        self.error = error


class ConfigurationError(FerryError):
    """Error raised when a Request can't be sent as described, the
    connection is released without a body having been sent.
    """


class URLError(ConfigurationError):
    """Error while parsing a URL"""


class UnsupportedCharset(ConfigurationError):
    """The charset named by the request isn't a codec Python understands"""


class TransferError(FerryError):
    """Error raised when reading from or writing to the connection fails.
    Whatever was sent before the failure must not be treated as a complete body.
    """


class LocalProtocolError(TransferError):
    """Error raised when the HTTP spec is violated locally"""


class RemoteProtocolError(TransferError):
    """Error raised when the remote peer violates the HTTP spec"""


class BufferingError(TransferError):
    """Error raised when a response body of unknown length can't be
    spooled to a temporary file. There's no fallback in that case.
    """
