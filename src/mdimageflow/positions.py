"""Character offsets and 0-based line/column positions in document text."""


def offset_to_position(text: str, offset: int) -> tuple[int, int]:
    """
    Convert a character offset to a (line, column) pair, both 0-based.

    Offsets past the end of the text map to the end of the last line.
    """
    offset = max(0, min(offset, len(text)))
    line = text.count("\n", 0, offset)
    line_start = text.rfind("\n", 0, offset) + 1
    return line, offset - line_start


def clamp_position(text: str, line: int, column: int) -> tuple[int, int]:
    """
    Clamp a position into the valid bounds of ``text``.

    The document may have changed since the position was computed, so the
    line is limited to the existing lines and the column to that line's length.
    """
    lines = text.split("\n")
    safe_line = max(0, min(line, len(lines) - 1))
    line_text = lines[safe_line].rstrip("\r")
    safe_column = max(0, min(column, len(line_text)))
    return safe_line, safe_column
