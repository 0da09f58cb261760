"""Shell-style file name matching with backslash separators."""

from __future__ import annotations

import re

PATH_SEPARATOR = "\\"


class BadPatternError(ValueError):
    """The pattern is malformed."""

    def __init__(self, message: str = "syntax error in pattern") -> None:
        super().__init__(message)


def _norm_pattern(pattern: str) -> str:
    return pattern.replace("/", PATH_SEPARATOR)


def match(pattern: str, name: str) -> bool:
    """Report whether ``name`` matches the whole shell pattern.

    ``*`` matches any run of non-separator characters, ``?`` any single
    non-separator character, and ``[...]`` a character class. Raises
    BadPatternError when the pattern is malformed.
    """
    pattern = _norm_pattern(pattern)

    while pattern:
        star, chunk, pattern = _scan_chunk(pattern)
        if star and not chunk:
            # Trailing * matches the rest unless it has a separator.
            return PATH_SEPARATOR not in name
        rest = _match_chunk(chunk, name)
        if rest is not None and (not rest or pattern):
            name = rest
            continue
        if star:
            for i, ch in enumerate(name):
                if ch == PATH_SEPARATOR:
                    break
                rest = _match_chunk(chunk, name[i + 1:])
                if rest is not None:
                    if not pattern and rest:
                        continue
                    name = rest
                    break
            else:
                return False
            if rest is not None and (pattern or not rest):
                continue
        return False
    return not name


def _scan_chunk(pattern: str) -> tuple[bool, str, str]:
    """Split off a leading star and the following non-star chunk."""
    stripped = pattern.lstrip("*")
    star = len(stripped) != len(pattern)
    in_range = False
    end = len(stripped)
    for i, ch in enumerate(stripped):
        if ch == "[":
            in_range = True
        elif ch == "]":
            in_range = False
        elif ch == "*" and not in_range:
            end = i
            break
    return star, stripped[:end], stripped[end:]


def _match_chunk(chunk: str, s: str) -> str | None:
    """Match ``chunk`` at the start of ``s``; return the rest or None.

    The whole chunk is always scanned, so a malformed pattern raises
    even when the match has already failed.
    """
    failed = False
    while chunk:
        if not failed and not s:
            failed = True
        head = chunk[0]
        if head == "[":
            r = ""
            if not failed:
                r, s = s[0], s[1:]
            chunk = chunk[1:]
            negated = False
            if chunk and chunk[0] == "^":
                negated = True
                chunk = chunk[1:]
            matched = False
            nrange = 0
            while True:
                if chunk and chunk[0] == "]" and nrange > 0:
                    chunk = chunk[1:]
                    break
                lo, chunk = _get_esc(chunk)
                hi = lo
                if chunk[0] == "-":
                    hi, chunk = _get_esc(chunk[1:])
                if not failed and lo <= r <= hi:
                    matched = True
                nrange += 1
            if matched == negated:
                failed = True
        elif head == "?":
            if not failed:
                if s[0] == PATH_SEPARATOR:
                    failed = True
                s = s[1:]
            chunk = chunk[1:]
        else:
            if not failed:
                if head != s[0]:
                    failed = True
                s = s[1:]
            chunk = chunk[1:]
    return None if failed else s


def _get_esc(chunk: str) -> tuple[str, str]:
    """Take one character of a character class."""
    if not chunk or chunk[0] in "-]":
        raise BadPatternError()
    rest = chunk[1:]
    if not rest:
        raise BadPatternError()
    return chunk[0], rest


_CHARACTER_RANGE = re.compile(r"\[\^?[^\[\]]+\]")


def simplify_pattern(pattern: str) -> str:
    """Replace each character class with ``?`` for server-side filtering."""
    return _CHARACTER_RANGE.sub("?", pattern)


def has_meta(path: str) -> bool:
    """Report whether ``path`` contains any of ``*?[``."""
    return any(ch in path for ch in "*?[")