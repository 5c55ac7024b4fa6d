from __future__ import annotations

from email.message import Message
from email.utils import collapse_rfc2231_value
from io import BytesIO
from typing import TYPE_CHECKING

from .exceptions import ConfigError, FramingError

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Mapping
    from typing import TypeAlias

    ParsedField: TypeAlias = "Field | File"


# Byte constants.  Indexing a bytes object gives an int, so single characters
# are kept as ints and multi-byte markers as bytes.
CR = b"\r"[0]
LF = b"\n"[0]
SPACE = b" "[0]
TAB = b"\t"[0]
SEMICOLON = b";"[0]
QUOTE = b'"'[0]

CRLF = b"\r\n"
DOUBLE_HYPHEN = b"--"
HEADER_SEPARATOR = b"\r\n\r\n"
BOUNDARY_KEY = b"boundary="


def parse_options_header(value: str | bytes | None) -> tuple[str, dict[str, str]]:
    """Parses a Content-Type or Content-Disposition header into a value in the
    following format: ``(content_type, {parameters})``.

    The main value is lower-cased; parameter names are lower-cased and their
    values unquoted.  RFC 2231 encoded parameters are decoded.
    """
    if not value:
        return ("", {})

    if isinstance(value, bytes):
        value = _decode_header_text(value)

    # If we have no options, return the string as-is.
    if ";" not in value:
        return (value.lower().strip(), {})

    # Parsing of legacy headers is left to the email package, as suggested
    # by PEP 594.
    message = Message()
    message["content-type"] = value
    params = message.get_params()
    assert params, "At least the content type value should be present"
    ctype = params.pop(0)[0].lower()
    options: dict[str, str] = {}
    for key, param in params:
        # RFC 2231 values come back as (charset, language, value) with the
        # value still in the declared charset.
        if isinstance(param, tuple):
            param = collapse_rfc2231_value(param, errors="replace", fallback_charset="utf-8")

        # Some old browsers send the full client-side path instead of the
        # filename.
        if key == "filename":
            if param[1:3] == ":\\" or param[:2] == "\\\\":
                param = param.split("\\")[-1]

        options[key] = param
    return ctype, options


def boundary_from_content_type(content_type: str | bytes | None) -> bytes:
    """Extracts the boundary token from a ``multipart/form-data`` Content-Type
    header.

    The ``boundary=`` key is matched case-sensitively and the value runs to
    the end of the header or the next ``;``.  Surrounding whitespace and
    double quotes are removed.  Raises :class:`ConfigError` when there is no
    usable boundary.
    """
    if not content_type:
        raise ConfigError("missing boundary")

    if isinstance(content_type, str):
        content_type = _encode_header_text(content_type)

    start = 0
    while True:
        idx = content_type.find(BOUNDARY_KEY, start)
        if idx == -1:
            raise ConfigError("missing boundary")
        # Only accept the key at the start of a parameter.
        if idx == 0 or content_type[idx - 1] in (SEMICOLON, SPACE, TAB):
            break
        start = idx + 1

    boundary = content_type[idx + len(BOUNDARY_KEY) :].split(b";", 1)[0].strip()
    if len(boundary) >= 2 and boundary[0] == QUOTE and boundary[-1] == QUOTE:
        boundary = boundary[1:-1]

    if not boundary:
        raise ConfigError("missing boundary")
    return boundary


def _decode_header_text(data: bytes) -> str:
    # Browsers send non-ASCII filenames as raw UTF-8.
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def _encode_header_text(value: str) -> bytes:
    # Boundaries given as text are matched as their UTF-8 bytes, the same
    # bytes a UTF-8 header carries.
    try:
        return value.encode("utf-8")
    except UnicodeEncodeError:
        raise ConfigError("Boundary is not encodable: %r" % value)


class Field:
    """A plain (non-file) form field.  The value is the part body decoded with
    the part's charset, defaulting to UTF-8.
    """

    def __init__(self, name: str, value: str, content_type: str | None = None) -> None:
        self._name = name
        self._value = value
        self._content_type = content_type

    @property
    def field_name(self) -> str:
        return self._name

    @property
    def value(self) -> str:
        return self._value

    @property
    def content_type(self) -> str | None:
        return self._content_type

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Field):
            return (
                self.field_name == other.field_name
                and self.value == other.value
                and self.content_type == other.content_type
            )
        else:
            return NotImplemented

    def __repr__(self) -> str:
        if len(self.value) > 97:
            v = repr(self.value[:97])[:-1] + "...'"
        else:
            v = repr(self.value)
        return f"{self.__class__.__name__}(field_name={self.field_name!r}, value={v})"


class File:
    """An uploaded file.

    ``payload`` holds the exact bytes found between the part headers and the
    next delimiter.  They are sliced out of the request body and are never
    decoded, so ``size`` always matches what the client sent.
    """

    def __init__(self, field_name: str, file_name: str, content_type: str | None, payload: bytes) -> None:
        self._field_name = field_name
        self._file_name = file_name
        self._content_type = content_type
        self._payload = payload

    @property
    def field_name(self) -> str:
        return self._field_name

    @property
    def file_name(self) -> str:
        """The filename the client declared in Content-Disposition."""
        return self._file_name

    @property
    def content_type(self) -> str | None:
        """The part's declared Content-Type, if any."""
        return self._content_type

    @property
    def payload(self) -> bytes:
        return self._payload

    @property
    def size(self) -> int:
        return len(self._payload)

    @property
    def file_object(self) -> BytesIO:
        """A new, independent file object positioned at the start of the
        payload.
        """
        return BytesIO(self._payload)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, File):
            return (
                self.field_name == other.field_name
                and self.file_name == other.file_name
                and self.content_type == other.content_type
                and self.payload == other.payload
            )
        else:
            return NotImplemented

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(file_name={self.file_name!r}, "
            f"field_name={self.field_name!r}, content_type={self.content_type!r}, size={self.size})"
        )


class MultipartParser:
    """Parser for a fully buffered multipart/form-data body.

    All searching is done on raw bytes with ``bytes.find``.  Only the header
    block of each part is decoded to text; part bodies are copied out by
    offset.  The parser keeps nothing but the boundary between calls, so one
    instance can be shared between threads.

    A match of ``CRLF--boundary`` only counts as a delimiter when it is
    followed by ``--`` or by optional spaces/tabs and CRLF.  Anything else is
    payload.
    """

    def __init__(self, boundary: bytes | str) -> None:
        if isinstance(boundary, str):
            boundary = _encode_header_text(boundary)
        if not boundary:
            raise ConfigError("missing boundary")

        self.boundary = boundary
        self.dash_boundary = DOUBLE_HYPHEN + boundary
        self.delimiter = CRLF + self.dash_boundary

    def parse(self, data: bytes) -> dict[str, ParsedField]:
        delimiter = self.delimiter

        # A body usually starts right at the first boundary with no CRLF in
        # front of it.  Otherwise there is a preamble, which we skip.
        if data.startswith(self.dash_boundary) and self._is_delimiter_end(data, len(self.dash_boundary)):
            pos = len(self.dash_boundary)
        else:
            found = self._find_delimiter(data, 0)
            if found == -1:
                raise FramingError("malformed multipart body")
            pos = found + len(delimiter)

        fields: dict[str, ParsedField] = {}
        while not data.startswith(DOUBLE_HYPHEN, pos):
            part_start = self._skip_padding(data, pos) + len(CRLF)
            part_end = self._find_delimiter(data, part_start)
            if part_end == -1:
                e = FramingError("Did not find a closing boundary for the part at %d" % part_start)
                e.offset = part_start
                raise e

            field = self._parse_part(data, part_start, part_end)
            if field is not None:
                fields[field.field_name] = field
            pos = part_end + len(delimiter)

        # Anything after the close delimiter is epilogue.
        return fields

    def _find_delimiter(self, data: bytes, start: int) -> int:
        delimiter = self.delimiter
        while True:
            idx = data.find(delimiter, start)
            if idx == -1 or self._is_delimiter_end(data, idx + len(delimiter)):
                return idx
            start = idx + 1

    def _is_delimiter_end(self, data: bytes, pos: int) -> bool:
        if data.startswith(DOUBLE_HYPHEN, pos):
            return True
        return data.startswith(CRLF, self._skip_padding(data, pos))

    @staticmethod
    def _skip_padding(data: bytes, pos: int) -> int:
        length = len(data)
        while pos < length and data[pos] in (SPACE, TAB):
            pos += 1
        return pos

    def _parse_part(self, data: bytes, start: int, end: int) -> ParsedField | None:
        # The header block ends at the first blank line.  The CRLF in front
        # of the delimiter may close it, hence the search runs to end + 2.
        if data.startswith(CRLF, start):
            header_end = start
            body_start = start + len(CRLF)
        else:
            header_end = data.find(HEADER_SEPARATOR, start, end + len(CRLF))
            if header_end == -1:
                e = FramingError("Did not find the end of the headers in the part at %d" % start)
                e.offset = start
                raise e
            body_start = header_end + len(HEADER_SEPARATOR)
        body_start = min(body_start, end)

        headers = self._parse_headers(data[start:header_end], start)

        disposition = headers.get("content-disposition")
        if disposition is None:
            return None

        _, options = parse_options_header(disposition)
        field_name = options.get("name")
        if field_name is None:
            return None

        content_type = headers.get("content-type")
        file_name = options.get("filename")

        if file_name is None:
            return Field(field_name, _decode_value(data[body_start:end], content_type), content_type)
        if not file_name:
            # An empty file input is submitted with filename="".
            return None
        return File(field_name, file_name, content_type, data[body_start:end])

    @staticmethod
    def _parse_headers(block: bytes, offset: int) -> dict[str, str]:
        headers: dict[str, str] = {}
        if not block:
            return headers

        for line in _decode_header_text(block).split("\r\n"):
            name, sep, value = line.partition(":")
            name = name.strip()
            if not sep or not name:
                e = FramingError("Found an invalid header line %r" % line)
                e.offset = offset
                raise e
            headers[name.lower()] = value.strip()
        return headers

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(boundary={self.boundary!r})"


def _decode_value(data: bytes, content_type: str | None) -> str:
    _, options = parse_options_header(content_type)
    charset = options.get("charset", "utf-8")
    try:
        return data.decode(charset, "replace")
    except LookupError:
        return data.decode("utf-8", "replace")


def parse(raw_body: bytes, boundary: bytes | str) -> dict[str, ParsedField]:
    """Parses a multipart/form-data body into a mapping of field name to
    :class:`Field` or :class:`File`.

    A field name that appears more than once keeps its last value.  Parts
    without a Content-Disposition header or without a ``name`` in it, and
    file inputs submitted empty (``filename=""``), are left out.

    Raises :class:`ConfigError` for an empty boundary and
    :class:`FramingError` when the body is not valid multipart data.
    """
    return MultipartParser(boundary).parse(raw_body)


def parse_form(headers: Mapping[str, str | bytes], raw_body: bytes) -> dict[str, ParsedField]:
    """Parses a buffered request body using the request's Content-Type
    header to find the boundary.

    ``headers`` can be a plain dict keyed by ``"Content-Type"`` or any
    case-insensitive mapping such as Starlette's ``Headers``.
    """
    content_type = headers.get("Content-Type")
    if content_type is None:
        content_type = headers.get("content-type")
    if content_type is None:
        raise ConfigError("No Content-Type header given")

    ctype, _ = parse_options_header(content_type)
    if ctype != "multipart/form-data":
        raise ConfigError(f"Unsupported Content-Type: {ctype}")

    return parse(raw_body, boundary_from_content_type(content_type))
