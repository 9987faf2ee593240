"""Parsing of the sandboxed module's diagnostic output.

When eget.wasm cannot find a file it expects under ``/tmp`` it prints a
single-line JSON object such as::

    {"path":"/tmp/https/api.github.com/repos/x/y/releases/latest",
     "url":"https://api.github.com/repos/x/y/releases/latest",
     "error":"file not found"}

possibly surrounded by ordinary log lines.
"""

import json

from eget_wasm.models import DiagnosticRecord

UNKNOWN_ERROR = "unknown error"


def find_json_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` fragment in ``text``.

    Braces inside JSON string literals are ignored. When an opening brace
    is never closed, the earliest brace that is closed wins, so
    ``{ broken {"a":1}`` yields ``{"a":1}``. Returns None if no balanced
    fragment exists. Single pass over ``text``.
    """
    open_positions: list[int] = []
    best: tuple[int, int] | None = None
    in_string = False
    escaped = False

    for index, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            # Quotes only matter inside a candidate object
            in_string = bool(open_positions)
        elif char == "{":
            open_positions.append(index)
        elif char == "}" and open_positions:
            start = open_positions.pop()
            if not open_positions:
                return text[start:index + 1]
            if best is None or start < best[0]:
                best = (start, index + 1)

    if best is None:
        return None
    return text[best[0]:best[1]]


def _string_field(data: dict, key: str) -> str | None:
    value = data.get(key)
    return value if isinstance(value, str) and value else None


def parse_diagnostic(text: str) -> DiagnosticRecord:
    """Extract a DiagnosticRecord from raw diagnostic text.

    Never raises. Anything that is not a decodable JSON object yields an
    unrecoverable record whose message is the raw text.
    """
    if not isinstance(text, str):
        text = "" if text is None else str(text)

    fragment = find_json_object(text)
    if fragment is None:
        return DiagnosticRecord(url=None, path=None, message=text)

    try:
        data = json.loads(fragment)
    except (ValueError, RecursionError):
        return DiagnosticRecord(url=None, path=None, message=text)

    if not isinstance(data, dict):
        return DiagnosticRecord(url=None, path=None, message=text)

    return DiagnosticRecord(
        url=_string_field(data, "url"),
        path=_string_field(data, "path"),
        message=_string_field(data, "error") or UNKNOWN_ERROR,
    )
