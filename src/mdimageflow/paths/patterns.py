"""Filesystem watch patterns derived from the destination rule table."""

import re
from typing import Iterable, Sequence

from ..core.model import DestinationRule

DEFAULT_IMAGE_EXTENSIONS = ("png", "jpg", "jpeg", "gif", "webp", "svg")

NAME_VARIABLES = (
    "documentFileName",
    "documentBaseName",
    "documentExtName",
    "documentDirName",
)
WORKSPACE_RE = re.compile(r"^\$\{documentWorkspaceFolder\}[/\\]*")


def extension_glob(extensions: Iterable[str] = DEFAULT_IMAGE_EXTENSIONS) -> str:
    """``*.{png,jpg,...}`` for the given extensions."""
    exts = [e.lstrip(".").lower() for e in extensions]
    if len(exts) == 1:
        return f"*.{exts[0]}"
    return "*.{" + ",".join(exts) + "}"


def generate_watch_patterns(
    rules: Sequence[DestinationRule],
    image_extensions: Iterable[str] = DEFAULT_IMAGE_EXTENSIONS,
) -> list[str]:
    """
    Turn destination patterns into workspace-relative watch globs.

    The results are over-broad on purpose: destination prediction filters the
    false positives later, while a missed event cannot be recovered.
    """
    ext_glob = extension_glob(image_extensions)
    if not rules:
        return [f"**/{ext_glob}"]

    patterns: list[str] = []
    for rule in rules:
        pattern = _watch_pattern(rule.destination_pattern, ext_glob)
        if pattern not in patterns:
            patterns.append(pattern)
    return patterns


def _watch_pattern(destination: str, ext_glob: str) -> str:
    pattern = destination.replace("\\", "/")

    anchored = WORKSPACE_RE.match(pattern) is not None
    pattern = WORKSPACE_RE.sub("", pattern)

    for name in NAME_VARIABLES:
        pattern = pattern.replace("${" + name + "}", "*")
    pattern = pattern.replace("${fileName}", ext_glob)
    # Unknown variables could expand to anything within a segment
    pattern = re.sub(r"\$\{[A-Za-z]+\}", "*", pattern)

    if pattern.endswith("/") or not pattern:
        pattern += ext_glob

    if anchored:
        return pattern

    # Relative to the document, which may sit anywhere below the root
    while pattern.startswith(("./", "../", "/")):
        pattern = pattern.split("/", 1)[1]
    if pattern.startswith("**/"):
        return pattern
    return f"**/{pattern}"
