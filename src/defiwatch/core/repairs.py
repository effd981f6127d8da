"""Textual repairs for almost-JSON replies.

Each repair is a pure ``str -> str`` function. The normalizer applies them
cumulatively in ``REPAIRS`` order and retries the parse after each one.
"""

from __future__ import annotations

import re
from typing import Callable

_STRING = re.compile(r'"(?:\\.|[^"\\])*"|\'(?:\\.|[^\'\\])*\'', re.DOTALL)

Repair = Callable[[str], str]


def _map_outside_strings(text: str, fn: Callable[[str], str]) -> str:
    """Apply ``fn`` to every stretch of text that is not a quoted string."""
    out = []
    pos = 0
    for m in _STRING.finditer(text):
        out.append(fn(text[pos:m.start()]))
        out.append(m.group(0))
        pos = m.end()
    out.append(fn(text[pos:]))
    return "".join(out)


_CURLY = {'"': "\u201c\u201d\u201e", "'": "\u2018\u2019"}
_STRING_ENDERS = (":", ",", "}", "]", "")


def _next_significant(text: str, start: int) -> str:
    for ch in text[start:]:
        if not ch.isspace():
            return ch
    return ""


def normalize_quotes(text: str) -> str:
    """Curly quotes that delimit strings become straight quotes.

    A curly quote inside a string is content and stays. A string opened with
    a curly quote closes at the next curly quote that is followed by ``:``,
    ``,``, ``}``, ``]`` or the end of the text.
    """
    out: list[str] = []
    closing = ""
    curly = False
    escaped = False
    for i, ch in enumerate(text):
        if not closing:
            straight = next((q for q, chars in _CURLY.items() if ch in chars), "")
            if straight:
                closing, curly = straight, True
                out.append(straight)
                continue
            if ch in "\"'":
                closing, curly = ch, False
            out.append(ch)
            continue

        if escaped:
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == closing:
            closing = ""
        elif curly and ch in _CURLY[closing] and _next_significant(text, i + 1) in _STRING_ENDERS:
            out.append(closing)
            closing = ""
            continue
        out.append(ch)
    return "".join(out)


def strip_comments(text: str) -> str:
    """Drop whole-line ``//`` comments and ``/* */`` blocks."""
    text = re.sub(r"/\*.*?\*/", "", text, flags=re.DOTALL)
    return re.sub(r"^\s*//.*$\n?", "", text, flags=re.MULTILINE)


def strip_trailing_commas(text: str) -> str:
    return _map_outside_strings(text, lambda s: re.sub(r",(\s*[}\]])", r"\1", s))


_BARE_KEY = re.compile(r"([{,]\s*)([A-Za-z_$][\w$-]*)(\s*:)")


def quote_bare_keys(text: str) -> str:
    """``{severity: "HIGH"}`` -> ``{"severity": "HIGH"}``."""
    return _map_outside_strings(text, lambda s: _BARE_KEY.sub(r'\1"\2"\3', s))


def _requote(match: re.Match) -> str:
    s = match.group(0)
    if s.startswith('"'):
        return s
    inner = s[1:-1].replace("\\'", "'").replace('"', '\\"')
    return f'"{inner}"'


def single_to_double_quotes(text: str) -> str:
    return _STRING.sub(_requote, text)


def python_literals(text: str) -> str:
    """True/False/None outside strings -> true/false/null."""
    def _fix(s: str) -> str:
        s = re.sub(r"\bTrue\b", "true", s)
        s = re.sub(r"\bFalse\b", "false", s)
        return re.sub(r"\bNone\b", "null", s)

    return _map_outside_strings(text, _fix)


def close_brackets(text: str) -> str:
    """Terminate a truncated string and append missing closers."""
    stack: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            stack.append("}" if ch == "{" else "]")
        elif ch in "}]" and stack and stack[-1] == ch:
            stack.pop()

    if not stack and not in_string:
        return text

    repaired = text
    if in_string:
        if escaped:
            repaired = repaired[:-1]
        repaired += '"'
    repaired = repaired.rstrip()
    if repaired.endswith(","):
        repaired = repaired[:-1]
    elif repaired.endswith(":"):
        repaired += " null"
    return repaired + "".join(reversed(stack))


REPAIRS: list[Repair] = [
    normalize_quotes,
    strip_comments,
    strip_trailing_commas,
    quote_bare_keys,
    single_to_double_quotes,
    python_literals,
    close_brackets,
]
