import sys

import atheris
from helpers import EnhancedDataProvider

with atheris.instrument_imports():
    from bory.helpers import is_type, parse_options_header


def TestOneInput(data: bytes) -> None:
    fdp = EnhancedDataProvider(data)
    value = fdp.ConsumeRandomString()
    try:
        parse_options_header(value)
    except ValueError:
        return
    is_type(value, ["json", "+json", "text/*", "application/x-www-form-urlencoded"])


def main():
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
