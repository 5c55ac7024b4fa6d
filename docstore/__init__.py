from ._version import __version__
from .multipart import (
    Field,
    File,
    MultipartParser,
    boundary_from_content_type,
    parse,
    parse_form,
    parse_options_header,
)

__all__ = (
    "__version__",
    "Field",
    "File",
    "MultipartParser",
    "boundary_from_content_type",
    "parse",
    "parse_form",
    "parse_options_header",
)
