import io
import sys

import atheris
from helpers import EnhancedDataProvider

with atheris.instrument_imports():
    from bory.parsers import JSONParser, TextParser, URLEncodedParser
    from bory.querystring import parse_extended, parse_simple
    from bory.request import Request

json_parser = JSONParser(strict=False)
text_parser = TextParser()
simple_parser = URLEncodedParser(extended=False)
extended_parser = URLEncodedParser(extended=True)


def run(parser, content_type: str, body: bytes) -> None:
    request = Request(
        "POST",
        "/",
        {"Content-Type": content_type, "Content-Length": str(len(body))},
        io.BytesIO(body),
    )
    calls = []
    parser(request, None, lambda err=None: calls.append(err))
    assert len(calls) == 1


def parse_json(fdp: EnhancedDataProvider) -> None:
    run(json_parser, "application/json", fdp.ConsumeRandomBytes())


def parse_text(fdp: EnhancedDataProvider) -> None:
    run(text_parser, "text/plain; charset=latin-1", fdp.ConsumeRandomBytes())


def parse_form_urlencoded(fdp: EnhancedDataProvider) -> None:
    parser = fdp.PickValueInList([simple_parser, extended_parser])
    run(parser, "application/x-www-form-urlencoded", fdp.ConsumeRandomBytes())


def decode_querystring(fdp: EnhancedDataProvider) -> None:
    data = fdp.ConsumeRandomString()
    parse_simple(data)
    parse_extended(data)


def TestOneInput(data: bytes) -> None:
    fdp = EnhancedDataProvider(data)
    targets = [parse_json, parse_text, parse_form_urlencoded, decode_querystring]
    target = fdp.PickValueInList(targets)
    target(fdp)


def main():
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
