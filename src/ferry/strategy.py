import enum
import typing

from .models import Request
from .parts import PartSource, TextPart

# Bodies estimated smaller than this are encoded in memory to learn
# their exact length.
MAX_IN_MEMORY_REQUEST = 16384


class Strategy(enum.Enum):
    NO_BODY = "NO_BODY"
    IN_MEMORY = "IN_MEMORY"
    FIXED_LENGTH = "FIXED_LENGTH"
    CHUNKED = "CHUNKED"
    SPILL_TO_TEMP = "SPILL_TO_TEMP"


class TransferPlan(typing.NamedTuple):
    """How a request body gets its length and goes over the wire.
    'content_length' is the estimate the plan was chosen with, the
    exact value is only known after encoding for IN_MEMORY and
    SPILL_TO_TEMP.
    """

    strategy: Strategy
    content_length: typing.Optional[int] = None
    chunk_size: typing.Optional[int] = None


def part_length(part: PartSource, charset: str) -> typing.Optional[int]:
    """Length of the part's payload or 'None' if it can't be known
    without consuming the part.
    """
    if isinstance(part, TextPart):
        return len(part.encode(charset))
    length = part.content_length
    if length is None or length < 0:
        return None
    return length


def estimate_content_length(request: Request) -> typing.Optional[int]:
    """Sums up the payload lengths of the raw body or of all fields
    and parts. One part of unknown length makes the whole estimate
    unknown. The estimate doesn't include multipart framing or form
    separators, it's only used to pick a TransferPlan.
    """
    charset = request.charset
    if request.body is not None:
        return part_length(request.body, charset)

    total = 0
    for part in list(request.fields.values()) + list(request.parts.values()):
        length = part_length(part, charset)
        if length is None:
            return None
        total += length
    return total


def select_plan(request: Request) -> TransferPlan:
    if not request.has_body:
        return TransferPlan(Strategy.NO_BODY)

    chunk_size = request.settings.chunk_size
    if chunk_size is not None and chunk_size >= 0:
        return TransferPlan(Strategy.CHUNKED, chunk_size=chunk_size)

    estimate = estimate_content_length(request)
    if estimate is not None and estimate < MAX_IN_MEMORY_REQUEST:
        return TransferPlan(Strategy.IN_MEMORY, content_length=estimate)

    if request.body is not None and estimate is not None:
        return TransferPlan(Strategy.FIXED_LENGTH, content_length=estimate)

    return TransferPlan(Strategy.SPILL_TO_TEMP, content_length=estimate)
