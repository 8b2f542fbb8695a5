"""Glob matching with the host editor's semantics.

``fnmatch`` lets ``*`` cross directory separators and knows nothing about
``**`` or ``{a,b}``, so patterns are translated here instead:

- ``*`` and ``?`` never match ``/``
- ``**`` as a whole segment matches zero or more segments
- ``{a,b,c}`` alternation (may be nested)
- ``[...]`` character classes, ``[!...]`` negated
- matching is case-sensitive; a leading ``./`` on the pattern is ignored
"""

import re
from functools import lru_cache


class GlobError(ValueError):
    """Raised for patterns that cannot be translated."""


def glob_to_regex(pattern: str) -> str:
    """Translate a glob pattern into an anchored regular expression source."""
    if pattern.startswith("./"):
        pattern = pattern[2:]
    body = _translate(pattern, 0, len(pattern))
    return f"^{body}$"


def _translate(pattern: str, start: int, end: int) -> str:
    out: list[str] = []
    i = start
    while i < end:
        c = pattern[i]

        if c == "*":
            if pattern[i:i + 2] == "**":
                at_seg_start = i == start or pattern[i - 1] == "/"
                j = i + 2
                at_seg_end = j >= end or pattern[j] == "/"
                if at_seg_start and at_seg_end:
                    if j < end:
                        # "**/" matches zero or more leading segments
                        out.append("(?:[^/]*/)*")
                        i = j + 1
                    else:
                        out.append(".*")
                        i = j
                    continue
                # "**" inside a segment behaves like "*"
                out.append("[^/]*")
                i = j
                continue
            out.append("[^/]*")
            i += 1
            continue

        if c == "?":
            out.append("[^/]")
            i += 1
            continue

        if c == "[":
            close = pattern.find("]", i + 2 if pattern[i + 1:i + 2] in ("!", "^") else i + 1)
            if close == -1 or close >= end:
                out.append(re.escape(c))
                i += 1
                continue
            inner = pattern[i + 1:close]
            if inner[:1] in ("!", "^"):
                inner = "^" + inner[1:]
            inner = inner.replace("\\", "\\\\")
            out.append(f"[{inner}]")
            i = close + 1
            continue

        if c == "{":
            close = _matching_brace(pattern, i, end)
            if close == -1:
                out.append(re.escape(c))
                i += 1
                continue
            alternatives = [
                _translate(pattern, a, b) for a, b in _split_alternatives(pattern, i + 1, close)
            ]
            out.append("(?:" + "|".join(alternatives) + ")")
            i = close + 1
            continue

        if c == "\\" and i + 1 < end:
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue

        out.append(re.escape(c))
        i += 1

    return "".join(out)


def _matching_brace(pattern: str, open_at: int, end: int) -> int:
    depth = 0
    for i in range(open_at, end):
        if pattern[i] == "{":
            depth += 1
        elif pattern[i] == "}":
            depth -= 1
            if depth == 0:
                return i
    return -1


def _split_alternatives(pattern: str, start: int, end: int) -> list[tuple[int, int]]:
    """Split the inside of ``{...}`` on top-level commas."""
    parts = []
    depth = 0
    seg_start = start
    for i in range(start, end):
        if pattern[i] == "{":
            depth += 1
        elif pattern[i] == "}":
            depth -= 1
        elif pattern[i] == "," and depth == 0:
            parts.append((seg_start, i))
            seg_start = i + 1
    parts.append((seg_start, end))
    return parts


@lru_cache(maxsize=256)
def compile_glob(pattern: str) -> re.Pattern[str]:
    """Compile a glob pattern, raising GlobError if the result is invalid."""
    try:
        return re.compile(glob_to_regex(pattern))
    except re.error as e:
        raise GlobError(f"Invalid glob pattern {pattern!r}: {e}") from e


def glob_match(path: str, pattern: str) -> bool:
    """Match a forward-slash relative path against a glob pattern."""
    if path.startswith("./"):
        path = path[2:]
    return compile_glob(pattern).match(path) is not None
