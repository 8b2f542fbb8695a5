"""Local image links in Markdown documents."""

import os
import re
from pathlib import Path
from urllib.parse import unquote

from .core.model import LocalImage
from .positions import offset_to_position

IMAGE_LINK_RE = re.compile(r"!\[([^\]]*)\]\(([^)]+)\)")

# The rewriter also recognises bitmap and icon files even though the
# watcher never subscribes to them.
LOCAL_IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".bmp", ".ico")


def link_target(raw: str) -> str:
    """
    Extract the path from the inside of ``(...)``.

    Handles ``<path with spaces>`` and a trailing ``"title"``.
    """
    raw = raw.strip()
    if raw.startswith("<") and ">" in raw:
        return raw[1:raw.index(">")]
    return raw.split()[0] if raw else raw


def is_remote_path(image_path: str) -> bool:
    return link_target(image_path).startswith(("http://", "https://", "//", "data:"))


def is_local_image_path(image_path: str) -> bool:
    """True for relative or absolute file paths with an image extension."""
    if is_remote_path(image_path):
        return False
    target = link_target(image_path).split("#")[0].split("?")[0]
    return os.path.splitext(target)[1].lower() in LOCAL_IMAGE_EXTENSIONS


def resolve_image_path(document_path: str | Path, image_path: str) -> Path:
    """Resolve an image path as written in a document to an absolute path."""
    target = unquote(link_target(image_path).split("#")[0].split("?")[0])
    base = os.path.dirname(os.path.abspath(document_path))
    return Path(os.path.normpath(os.path.join(base, target)))


def _local_image(text: str, match: re.Match[str], document_path: str | Path | None) -> LocalImage:
    start_line, start_col = offset_to_position(text, match.start())
    end_line, end_col = offset_to_position(text, match.end())
    absolute = resolve_image_path(document_path, match.group(2)) if document_path else None
    return LocalImage(
        full_match=match.group(0),
        alt_text=match.group(1),
        image_path=match.group(2),
        start_line=start_line,
        start_column=start_col,
        end_line=end_line,
        end_column=end_col,
        absolute_path=absolute,
        exists=absolute.is_file() if absolute is not None else False,
    )


def find_local_images(text: str, document_path: str | Path | None = None) -> list[LocalImage]:
    """All local image links in document order."""
    return [
        _local_image(text, m, document_path)
        for m in IMAGE_LINK_RE.finditer(text)
        if is_local_image_path(m.group(2))
    ]


def image_at(
    text: str,
    line: int,
    column: int,
    document_path: str | Path | None = None,
) -> LocalImage | None:
    """The image link (local or remote) under a cursor position, if any."""
    for m in IMAGE_LINK_RE.finditer(text):
        start = offset_to_position(text, m.start())
        end = offset_to_position(text, m.end())
        if start <= (line, column) <= end:
            local = is_local_image_path(m.group(2))
            return _local_image(text, m, document_path if local else None)
    return None
