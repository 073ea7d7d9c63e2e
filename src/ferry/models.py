import typing
import urllib.parse

from .decoders import accept_encoding
from .exceptions import ConfigurationError, UnsupportedCharset, URLError
from .parts import TEXT_PLAIN, PartSource, TextPart, as_part
from .utils import form_urlencode, is_known_encoding, parse_mimetype

FORM_URL_ENCODED = "application/x-www-form-urlencoded"
MULTIPART_FORM_DATA = "multipart/form-data"
JSON = "application/json"

# Methods that carry a body even when no data was given.
BODY_METHODS = frozenset(("POST", "PUT", "PATCH"))
DEFAULT_CONTENT_TYPES = {
    "POST": FORM_URL_ENCODED,
    "PUT": FORM_URL_ENCODED,
    "PATCH": JSON,
}

KT = typing.TypeVar("KT")
VT = typing.TypeVar("VT")
NormKT = typing.TypeVar("NormKT")
NormVT = typing.TypeVar("NormVT")
MultiMappingType = typing.Union[
    typing.Mapping[KT, VT], typing.Sequence[typing.Tuple[KT, VT]]
]


class MultiMapping(typing.Generic[KT, VT, NormKT, NormVT]):
    """Mapping of one key to many values. Keys keep the order in
    which they were first added and values keep insertion order per key.
    """

    def __init__(self, values: typing.Optional[MultiMappingType] = None):
        self._internal: typing.Dict[
            NormKT, typing.List[typing.Tuple[NormKT, NormVT]]
        ] = {}
        if values:
            self.extend(values)

    def get_one(
        self, key: KT, default: typing.Optional[NormVT] = None
    ) -> typing.Optional[NormVT]:
        try:
            return self._internal[self._normalize_key(key)][0][1]
        except (KeyError, IndexError):
            return default

    get = get_one

    def get_all(self, key: KT) -> typing.List[NormVT]:
        try:
            return [x[1] for x in self._internal[self._normalize_key(key)]]
        except KeyError:
            return []

    def pop_all(self, key: KT) -> typing.List[NormVT]:
        try:
            return [x[1] for x in self._internal.pop(self._normalize_key(key))]
        except KeyError:
            return []

    def add(self, key: KT, value: VT) -> None:
        key = self._normalize_key(key)
        self._internal.setdefault(key, []).append((key, self._normalize_value(value)))

    def extend(self, items: MultiMappingType) -> None:
        for k, v in items.items() if hasattr(items, "items") else items:
            self.add(k, v)

    def keys(self) -> typing.Iterable[NormKT]:
        for items in self._internal.values():
            if items:
                yield items[0][0]

    def values(self) -> typing.Iterable[NormVT]:
        for items in self._internal.values():
            for _, value in items:
                yield value

    def items(self) -> typing.Iterable[typing.Tuple[NormKT, NormVT]]:
        for items in self._internal.values():
            for k, v in items:
                yield k, v

    def copy(self) -> "MultiMapping[KT, VT, NormKT, NormVT]":
        new = type(self)()
        new._internal = {k: list(v) for k, v in self._internal.items()}
        return new

    def __contains__(self, item: KT) -> bool:
        return bool(self._internal.get(self._normalize_key(item), None))

    def __getitem__(self, item: KT) -> NormVT:
        try:
            return self._internal[self._normalize_key(item)][0][1]
        except (KeyError, IndexError):
            raise KeyError(item) from None

    def __setitem__(self, key: KT, value: VT) -> None:
        key = self._normalize_key(key)
        self._internal[key] = [(key, self._normalize_value(value))]

    def __delitem__(self, key: KT) -> None:
        self._internal.pop(self._normalize_key(key), None)

    def __len__(self) -> int:
        return sum(len(items) for items in self._internal.values())

    def __bool__(self) -> bool:
        return any(self._internal.values())

    def _normalize_key(self, key: KT) -> NormKT:
        return key

    def _normalize_value(self, value: VT) -> NormVT:
        return value


HeadersType = typing.Union[
    typing.Mapping[str, typing.Optional[str]],
    typing.Mapping[bytes, typing.Optional[bytes]],
    typing.Iterable[typing.Tuple[str, typing.Optional[str]]],
    typing.Iterable[typing.Tuple[bytes, typing.Optional[bytes]]],
    "Headers",
]


class Headers(
    MultiMapping[
        typing.Union[str, bytes],
        typing.Optional[typing.Union[str, bytes]],
        str,
        str,
    ]
):
    def _normalize_key(self, key: KT) -> NormKT:
        if isinstance(key, bytes):
            key = key.decode("latin-1")
        return key.lower()

    def _normalize_value(self, value: VT) -> NormVT:
        if value is None:
            return ""
        if isinstance(value, bytes):
            value = value.decode("latin-1")
        return str(value)

    def __repr__(self) -> str:
        # Smart repr that switches to list-of-tuple mode when
        # multiple values for one key are detected. Most of the
        # time it's easier to read the dictionary.
        if any(len(x) > 1 for x in self._internal.values()):
            internal_repr = repr([(k, v) for k, v in self.items()])
        else:
            internal_repr = repr({k: v for (k, v), in self._internal.values()})
        return f"<Headers {internal_repr}>"

    __str__ = __repr__


class Fields(MultiMapping[str, typing.Any, str, PartSource]):
    """Form fields or multipart parts by name. Plain values are
    wrapped with 'as_part()' as they're added.
    """

    def _normalize_value(self, value: typing.Any) -> PartSource:
        return as_part(value)

    def __repr__(self) -> str:
        return f"<Fields {[(k, v) for k, v in self.items()]!r}>"

    __str__ = __repr__


FieldsType = typing.Union[
    typing.Mapping[str, typing.Any], typing.Sequence[typing.Tuple[str, typing.Any]]
]


class TransferSettings(typing.NamedTuple):
    """Knobs for how a single Request is encoded and transferred.
    Derive variants with '._replace()'.
    """

    # Use chunked transfer-encoding. 0 lets the connection pick the
    # size of each chunk. 'None' means a length is always declared.
    chunk_size: typing.Optional[int] = None
    # Content-Type to use when the Request doesn't have one, 'None'
    # picks one based on the method.
    default_content_type: typing.Optional[str] = None
    # Charset for text values unless the Content-Type header names one.
    charset: str = "UTF-8"
    jpeg_quality: int = 90
    # Close images after they've been encoded into the body.
    dispose_images: bool = False
    # Transparently decode responses with a 'Content-Encoding'.
    auto_decompress: bool = True
    # Sniff the Content-Type of file parts instead of using
    # 'application/octet-stream'.
    guess_content_types: bool = False


class Request:
    """Everything needed to produce one request body. Either a single
    raw 'body' or any number of 'fields' and 'parts', not both.

    Fields holding anything other than text, or any explicit part,
    switch the body to 'multipart/form-data'. Without those fields are
    sent 'application/x-www-form-urlencoded' (or 'text/plain' if that's
    the content type). On a request without a body the fields are
    added to the query string instead.
    """

    def __init__(
        self,
        method: str,
        url: str,
        *,
        headers: typing.Optional[HeadersType] = None,
        fields: typing.Optional[FieldsType] = None,
        parts: typing.Optional[FieldsType] = None,
        body: typing.Any = None,
        settings: typing.Optional[TransferSettings] = None,
    ):
        self.method = method
        self.url = url
        self.headers = Headers(headers)
        self.fields = Fields(fields)
        self.parts = Fields(parts)
        self.body = body
        self.settings = settings or TransferSettings()

    @property
    def method(self) -> str:
        return self._method

    @method.setter
    def method(self, value: str) -> None:
        self._method = value.upper()

    @property
    def url(self) -> str:
        return self._url

    @url.setter
    def url(self, value: str) -> None:
        try:
            parsed = urllib.parse.urlsplit(value)
            is_absolute = (
                parsed.scheme in ("http", "https")
                and bool(parsed.hostname)
                and parsed.port != 0
            )
        except ValueError as e:
            raise URLError(f"malformed URL '{value}'", error=e) from None
        if not is_absolute:
            raise URLError(f"URL '{value}' must be absolute with an http(s) scheme")
        self._url = value
        self._parsed_url = parsed

    @property
    def host(self) -> str:
        """Value for the 'Host' header"""
        return self._parsed_url.netloc.rpartition("@")[2]

    @property
    def target(self) -> str:
        """Request target for the request line. Fields of a request
        without a body end up in the query string.
        """
        target = self._parsed_url.path or "/"
        query = self._parsed_url.query
        if self.fields and not self.has_body:
            params = self.encode_fields_as_query()
            query = f"{query}&{params}" if query else params
        return f"{target}?{query}" if query else target

    @property
    def body(self) -> typing.Optional[PartSource]:
        return self._body

    @body.setter
    def body(self, value: typing.Any) -> None:
        self._body = None if value is None else as_part(value)

    def add_field(self, name: str, value: typing.Any) -> "Request":
        self.fields.add(name, value)
        return self

    def add_part(
        self,
        name: str,
        data: typing.Any,
        *,
        filename: typing.Optional[str] = None,
        content_type: typing.Optional[str] = None,
        charset: typing.Optional[str] = None,
    ) -> "Request":
        """Adds a part that is always sent as multipart/form-data."""
        part = as_part(data)
        if filename is not None:
            part.filename = filename
        if content_type is not None:
            part.content_type = content_type
        if charset is not None:
            part.charset = charset
        self.parts.add(name, part)
        return self

    def accept_compressed(self) -> "Request":
        """Asks for a response in any Content-Encoding we can decode."""
        self.headers["Accept-Encoding"] = accept_encoding()
        return self

    @property
    def has_body(self) -> bool:
        return self.body is not None or self.method in BODY_METHODS or bool(self.parts)

    @property
    def needs_multipart(self) -> bool:
        if self.body is not None:
            return False
        return bool(self.parts) or any(
            not isinstance(part, TextPart) for part in self.fields.values()
        )

    @property
    def custom_content_type(self) -> typing.Optional[str]:
        """The Content-Type header as given by the caller, if any"""
        return self.headers.get_one("content-type")

    @property
    def default_content_type(self) -> typing.Optional[str]:
        if self.settings.default_content_type is not None:
            return self.settings.default_content_type
        return DEFAULT_CONTENT_TYPES.get(self.method)

    @property
    def charset(self) -> str:
        """Charset to encode text with. Taken from the Content-Type
        header if it names one, otherwise from the settings.
        """
        charset = parse_mimetype(self.custom_content_type).parameters.get("charset")
        charset = charset or self.settings.charset
        if is_known_encoding(charset) is None:
            raise UnsupportedCharset(f"unknown charset '{charset}'", request=self)
        return charset

    @property
    def is_plain_text_form(self) -> bool:
        return any(
            str(parse_mimetype(content_type)) == TEXT_PLAIN
            for content_type in (self.custom_content_type, self.default_content_type)
            if content_type
        )

    def check(self) -> None:
        """Raises 'ConfigurationError' if the body is ambiguous."""
        if self.body is not None and (self.fields or self.parts):
            raise ConfigurationError(
                "a raw body can't be combined with fields or parts", request=self
            )

    def encode_fields_as_query(self) -> str:
        charset = self.charset
        return "&".join(
            (
                form_urlencode(name, charset)
                + b"="
                + form_urlencode(_field_text(part), charset)
            ).decode("ascii")
            for name, part in self.fields.items()
        )

    def __repr__(self) -> str:
        return f"<Request [{self.method}]>"


def _field_text(part: PartSource) -> str:
    return part.text if isinstance(part, TextPart) else ""
