class DocStoreError(ValueError):
    """Base error class for the document store."""


class ParseError(DocStoreError):
    """This exception (or a subclass) is raised when a request body could not
    be parsed as multipart/form-data.
    """

    #: This is the offset in the request body at which the parse error was
    #: detected.  It will be -1 if not specified.
    offset = -1


class ConfigError(ParseError):
    """Raised when the boundary cannot be determined, for example when the
    Content-Type header is missing or has no ``boundary=`` parameter.
    """


class FramingError(ParseError):
    """Raised when the body does not follow multipart framing: no delimiter,
    a missing closing delimiter, or a part whose headers are broken.
    """


class StorageError(DocStoreError, OSError):
    """Exception class for problems with the content store or the metadata
    file.
    """
