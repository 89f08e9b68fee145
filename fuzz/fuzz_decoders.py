import sys

import atheris
from helpers import EnhancedDataProvider

with atheris.instrument_imports():
    from bory.decoders import DeflateDecoder, GzipDecoder
    from bory.exceptions import DecodeError, PayloadTooLarge
    from bory.read import BodyBuffer


def fuzz_gzip_decoder(fdp: EnhancedDataProvider) -> None:
    decoder = GzipDecoder(BodyBuffer(limit=1024 * 1024))
    decoder.write(fdp.ConsumeRandomBytes())
    decoder.finalize()


def fuzz_deflate_decoder(fdp: EnhancedDataProvider) -> None:
    decoder = DeflateDecoder(BodyBuffer(limit=1024 * 1024))
    decoder.write(fdp.ConsumeRandomBytes())
    decoder.finalize()


def TestOneInput(data: bytes) -> None:
    fdp = EnhancedDataProvider(data)
    targets = [fuzz_gzip_decoder, fuzz_deflate_decoder]
    target = fdp.PickValueInList(targets)

    try:
        target(fdp)
    except (DecodeError, PayloadTooLarge):
        return


def main():
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
