from __future__ import annotations

import os
from io import BytesIO
from typing import TYPE_CHECKING

import pytest
import yaml

from bory import Request, create_parser

from .utils import Next

if TYPE_CHECKING:
    from typing import Any, TypedDict

    class TestParams(TypedDict):
        name: str
        test: bytes
        result: Any


# Get the current directory for our later test cases.
curr_dir = os.path.abspath(os.path.dirname(__file__))

# Load our list of HTTP test cases.
http_tests_dir = os.path.join(curr_dir, "test_data", "http")

# Read in all test cases and load them.
http_tests: list[TestParams] = []
for f in sorted(os.listdir(http_tests_dir)):
    # Only load the HTTP test cases.
    fname, ext = os.path.splitext(f)
    if ext == ".http":
        # Get the YAML file and load it too.
        yaml_file = os.path.join(http_tests_dir, fname + ".yaml")

        # Load both.
        with open(os.path.join(http_tests_dir, f), "rb") as fh:
            test_data = fh.read()

        with open(yaml_file, "rb") as fy:
            yaml_data = yaml.safe_load(fy)

        http_tests.append({"name": fname, "test": test_data, "result": yaml_data})


def parse_http(data: bytes) -> Request:
    """Turn a raw HTTP/1.1 request into a :class:`Request`."""
    head, _, body = data.partition(b"\r\n\r\n")
    lines = head.decode("latin-1").split("\r\n")
    method, url, _ = lines[0].split(" ", 2)

    headers = {}
    for line in lines[1:]:
        name, _, value = line.partition(":")
        headers[name.strip()] = value.strip()

    return Request(method, url, headers, BytesIO(body))


@pytest.mark.parametrize("param", http_tests, ids=[t["name"] for t in http_tests])
def test_http(param: TestParams) -> None:
    request = parse_http(param["test"])
    expected = param["result"]["expected"]

    # Run the parsers in order, stopping at the first error.
    error = None
    for step in param["result"]["parsers"]:
        parser = create_parser(step["kind"], step.get("options") or {})
        done = Next()
        parser(request, None, done)
        error = done.error
        if error is not None:
            break

    if "error" in expected:
        assert error is not None, param["name"]
        assert error.status == expected["error"]["status"]
        assert error.type == expected["error"]["type"]
        assert error.message.startswith(expected["error"]["message"])
        return

    assert error is None, repr(error)
    if "body" in expected:
        assert request.body == expected["body"]
    if "query" in expected:
        assert request.query == expected["query"]


def test_fixtures_loaded() -> None:
    assert len(http_tests) >= 10
