from __future__ import annotations

import re
from html.entities import name2codepoint

NAMED_ENTITY_PATTERN = re.compile(r"&([a-zA-Z][a-zA-Z0-9]*);")
DECIMAL_ENTITY_PATTERN = re.compile(r"&#(\d+);")
HEX_ENTITY_PATTERN = re.compile(r"&#[xX]([0-9a-fA-F]+);")
TAG_PATTERN = re.compile(r"</?[^>]+(>|$)")

# Feeds use &nbsp; as an ordinary separator.
_NAMED_OVERRIDES = {"nbsp": " ", "apos": "'"}


def normalize_whitespace(text: str) -> str:
    return " ".join(text.split())


def _from_code_point(code_point: int, original: str) -> str:
    if code_point <= 0 or code_point > 0x10FFFF or 0xD800 <= code_point <= 0xDFFF:
        return original
    return chr(code_point)


def _replace_named(match: re.Match[str]) -> str:
    name = match.group(1)
    if name in _NAMED_OVERRIDES:
        return _NAMED_OVERRIDES[name]
    code_point = name2codepoint.get(name)
    if code_point is None:
        code_point = name2codepoint.get(name.lower())
    if code_point is None:
        return match.group(0)
    return chr(code_point)


def decode_entities(text: str) -> str:
    """Replace named, decimal and hex character references with literal characters.

    Unknown names and out-of-range code points are left exactly as written.
    """
    result = NAMED_ENTITY_PATTERN.sub(_replace_named, text)
    result = DECIMAL_ENTITY_PATTERN.sub(
        lambda match: _from_code_point(int(match.group(1)), match.group(0)),
        result,
    )
    return HEX_ENTITY_PATTERN.sub(
        lambda match: _from_code_point(int(match.group(1), 16), match.group(0)),
        result,
    )


def strip_html(text: str | None) -> str | None:
    if not text:
        return None
    decoded = decode_entities(text)
    return normalize_whitespace(TAG_PATTERN.sub(" ", decoded))
