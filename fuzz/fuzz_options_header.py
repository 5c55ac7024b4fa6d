import sys

import atheris
from helpers import EnhancedDataProvider

with atheris.instrument_imports():
    from docstore.exceptions import ConfigError
    from docstore.multipart import boundary_from_content_type, parse_options_header


def TestOneInput(data: bytes) -> None:
    fdp = EnhancedDataProvider(data)
    value = fdp.ConsumeRandomBytes()
    try:
        parse_options_header(value)
    except AssertionError:
        return
    except TypeError:
        return

    try:
        boundary_from_content_type(value)
    except ConfigError:
        return


def main():
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
