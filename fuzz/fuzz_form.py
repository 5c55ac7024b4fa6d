import sys

import atheris
from helpers import EnhancedDataProvider

with atheris.instrument_imports():
    from docstore.exceptions import ParseError
    from docstore.multipart import File, parse, parse_form


def parse_random_body(fdp: EnhancedDataProvider) -> None:
    parse(fdp.ConsumeRandomBytes(), fdp.ConsumeBoundary())


def parse_random_headers(fdp: EnhancedDataProvider) -> None:
    header = {"Content-Type": fdp.ConsumeUnicodeNoSurrogates(fdp.ConsumeIntInRange(0, 200))}
    parse_form(header, fdp.ConsumeRandomBytes())


def parse_file_payload(fdp: EnhancedDataProvider) -> None:
    boundary = b"fuzzboundary"
    payload = fdp.ConsumeRandomBytes()
    body = (
        b"--" + boundary + b"\r\n"
        b'Content-Disposition: form-data; name="file"; filename="f.bin"\r\n\r\n'
        + payload
        + b"\r\n--" + boundary + b"--\r\n"
    )
    fields = parse(body, boundary)

    # The payload must survive unchanged unless it contains a real delimiter.
    if b"\r\n--" + boundary not in payload:
        f = fields["file"]
        assert isinstance(f, File)
        assert f.payload == payload


def TestOneInput(data: bytes) -> None:
    fdp = EnhancedDataProvider(data)
    targets = [parse_random_body, parse_random_headers, parse_file_payload]
    target = fdp.PickValueInList(targets)

    try:
        target(fdp)
    except ParseError:
        return


def main():
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
