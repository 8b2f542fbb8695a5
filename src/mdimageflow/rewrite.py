"""Rewrite a local image reference to its uploaded URL."""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote, unquote

from .config import ScoreWeights
from .core.model import RewriteOutcome
from .core.ports import DocumentStore
from .images import IMAGE_LINK_RE, is_local_image_path, is_remote_path, link_target
from .positions import clamp_position, offset_to_position

logger = logging.getLogger("mdimageflow.rewrite")


@dataclass(frozen=True)
class ImageReference:
    """One ``![alt](path)`` occurrence selected for replacement."""
    start: int  # character offsets into the document text
    end: int
    start_line: int
    start_column: int
    end_line: int
    end_column: int
    alt_text: str
    original_path: str
    score: int = 0

    def new_text(self, remote_url: str) -> str:
        return f"![{self.alt_text}]({remote_url})"


@dataclass(frozen=True)
class Rewrite:
    text: str  # full document text after the edit
    reference: ImageReference
    line: int  # end of the inserted reference
    column: int


def _alternation(*values: str) -> str:
    seen: list[str] = []
    for v in values:
        if v and v not in seen:
            seen.append(v)
    return "(?:" + "|".join(re.escape(v) for v in seen) + ")"


def relative_image_path(local_image_path: str | Path, document_path: str | Path | None) -> str:
    """The image path relative to the document's directory, forward slashes."""
    if document_path is None:
        return os.path.basename(local_image_path)
    base = os.path.dirname(os.path.abspath(document_path))
    rel = os.path.relpath(os.path.abspath(local_image_path), base)
    return rel.replace("\\", "/")


def match_score(
    image_path: str,
    file_name: str,
    relative_path: str,
    weights: ScoreWeights = ScoreWeights(),
) -> int:
    """Additive similarity between a path written in the document and the image."""
    path = unquote(link_target(image_path)).replace("\\", "/")
    score = 0
    if path.rsplit("/", 1)[-1] == file_name:
        score += weights.file_name
    if file_name in path:
        score += weights.contains_file_name
    if relative_path and relative_path in path:
        score += weights.contains_relative_path
    return score


def _reference(text: str, match: re.Match[str], score: int) -> ImageReference:
    start_line, start_col = offset_to_position(text, match.start())
    end_line, end_col = offset_to_position(text, match.end())
    return ImageReference(
        start=match.start(),
        end=match.end(),
        start_line=start_line,
        start_column=start_col,
        end_line=end_line,
        end_column=end_col,
        alt_text=match.group(1) or "",
        original_path=match.group(2),
        score=score,
    )


def find_image_reference(
    text: str,
    local_image_path: str | Path,
    document_path: str | Path | None = None,
    weights: ScoreWeights = ScoreWeights(),
) -> ImageReference | None:
    """
    Locate the reference to ``local_image_path`` in ``text``.

    Pattern classes are tried in order: relative path, bare file name,
    ``./``-prefixed file name. Within the first class that matches, the
    highest score wins and the earliest occurrence breaks ties. Remote
    links never match, even when the URL contains the file name. When nothing
    matches, the last local image reference in the document is used, since
    the user may have kept typing below the paste point while uploading.
    """
    file_name = os.path.basename(local_image_path)
    relative = relative_image_path(local_image_path, document_path)

    rel_alt = _alternation(relative, quote(relative))
    name_alt = _alternation(file_name, quote(file_name))
    classes = [
        re.compile(rf"!\[([^\]]*)\]\(([^)]*{rel_alt}[^)]*)\)"),
        re.compile(rf"!\[([^\]]*)\]\(([^)]*{name_alt}[^)]*)\)"),
        re.compile(rf"!\[([^\]]*)\]\((\./[^)]*{name_alt}[^)]*)\)"),
    ]

    for regex in classes:
        best: ImageReference | None = None
        for match in regex.finditer(text):
            if is_remote_path(match.group(2)):
                # Already uploaded, e.g. an earlier reference to the same file
                continue
            score = match_score(match.group(2), file_name, relative, weights)
            if best is None or score > best.score:
                best = _reference(text, match, score)
        if best is not None:
            return best

    last = None
    for match in IMAGE_LINK_RE.finditer(text):
        if is_local_image_path(match.group(2)):
            last = match
    if last is not None:
        return _reference(text, last, 0)
    return None


def rewrite(
    text: str,
    local_image_path: str | Path,
    remote_url: str,
    document_path: str | Path | None = None,
    weights: ScoreWeights = ScoreWeights(),
) -> Rewrite | None:
    """Replace the matching reference with ``![alt](remote_url)``."""
    ref = find_image_reference(text, local_image_path, document_path, weights)
    if ref is None:
        return None

    replacement = ref.new_text(remote_url)
    new_text = text[:ref.start] + replacement + text[ref.end:]
    line, column = offset_to_position(new_text, ref.start + len(replacement))
    line, column = clamp_position(new_text, line, column)
    return Rewrite(text=new_text, reference=ref, line=line, column=column)


class LinkRewriter:
    """Apply rewrites to documents through a DocumentStore."""

    def __init__(self, documents: DocumentStore, weights: ScoreWeights | None = None):
        self.documents = documents
        self.weights = weights or ScoreWeights()

    def replace_image_link(
        self,
        document_path: str | Path,
        local_image_path: str | Path,
        remote_url: str,
    ) -> RewriteOutcome:
        """Rewrite and persist. Failures come back as ``success=False``."""
        document_path = Path(document_path)
        try:
            text = self.documents.read_text(document_path)
        except OSError as e:
            logger.warning("Cannot read %s: %s", document_path, e)
            return RewriteOutcome(success=False, error=f"Cannot open document: {e}")
        if text is None:
            return RewriteOutcome(success=False, error=f"Document not found: {document_path}")

        result = rewrite(text, local_image_path, remote_url, document_path, self.weights)
        if result is None:
            return RewriteOutcome(
                success=False,
                error=f"No reference to {Path(local_image_path).name} found in {document_path.name}",
            )

        try:
            self.documents.write_text(document_path, result.text)
        except OSError as e:
            logger.warning("Cannot write %s: %s", document_path, e)
            return RewriteOutcome(success=False, error=f"Cannot save document: {e}")

        logger.info(
            "Replaced %s with %s in %s", result.reference.original_path, remote_url, document_path
        )
        return RewriteOutcome(success=True, line=result.line, column=result.column)
