from .connection import Connection
from .encoder import BodyEncoder, MultipartEnvelope, encode_multipart_formdata
from .exceptions import (
    FerryError,
    ConfigurationError,
    URLError,
    UnsupportedCharset,
    TransferError,
    LocalProtocolError,
    RemoteProtocolError,
    BufferingError,
)
from .http11 import HTTP11Connection
from .models import Fields, Headers, Request, TransferSettings
from .parts import (
    PartSource,
    TextPart,
    BytesPart,
    FilePart,
    StreamPart,
    ImagePart,
    DynamicPart,
)
from .progress import UNKNOWN_LENGTH, ProgressListener
from .response import Response
from .strategy import Strategy, TransferPlan, estimate_content_length, select_plan
from .tasks import TransferListener, TransferTask, send_async, submit
from .transfer import send, write_request_body

__all__ = [
    "Connection",
    "HTTP11Connection",
    "BodyEncoder",
    "MultipartEnvelope",
    "encode_multipart_formdata",
    "FerryError",
    "ConfigurationError",
    "URLError",
    "UnsupportedCharset",
    "TransferError",
    "LocalProtocolError",
    "RemoteProtocolError",
    "BufferingError",
    "Fields",
    "Headers",
    "Request",
    "TransferSettings",
    "PartSource",
    "TextPart",
    "BytesPart",
    "FilePart",
    "StreamPart",
    "ImagePart",
    "DynamicPart",
    "UNKNOWN_LENGTH",
    "ProgressListener",
    "Response",
    "Strategy",
    "TransferPlan",
    "estimate_content_length",
    "select_plan",
    "TransferListener",
    "TransferTask",
    "send_async",
    "submit",
    "send",
    "write_request_body",
]

__version__ = "0.1.0"
