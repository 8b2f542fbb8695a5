"""Destination pattern variables.

Patterns use the host editor's ``${name}`` syntax. Recognised names:

- ``documentFileName``: ``notes.md``
- ``documentBaseName``: ``notes``
- ``documentExtName``: ``md``
- ``documentDirName``: name of the directory holding the document
- ``documentWorkspaceFolder``: enclosing project root, else the document's directory
- ``fileName``: the image file name supplied by the caller

Anything else is left untouched.
"""

import os
import re
from pathlib import Path
from typing import Iterable

from ..core.model import PathVariables

VARIABLE_RE = re.compile(r"\$\{([A-Za-z]+)\}")


def find_workspace_folder(path: str | Path, workspace_folders: Iterable[str | Path]) -> Path | None:
    """
    Return the deepest workspace folder containing ``path``.

    ``None`` means the path lives outside every known project root.
    """
    target = os.path.normpath(os.path.abspath(path))
    best: str | None = None
    for folder in workspace_folders:
        root = os.path.normpath(os.path.abspath(folder))
        if target == root or target.startswith(root.rstrip(os.sep) + os.sep):
            if best is None or len(root) > len(best):
                best = root
    return Path(best) if best is not None else None


def path_variables(
    document_path: str | Path,
    image_file_name: str,
    workspace_folders: Iterable[str | Path] = (),
) -> PathVariables:
    """Compute the variable values for one (document, image) pair."""
    doc = os.path.normpath(os.path.abspath(document_path))
    doc_dir = os.path.dirname(doc)
    base = os.path.basename(doc)
    stem, ext = os.path.splitext(base)
    root = find_workspace_folder(doc, workspace_folders)

    return PathVariables(
        document_file_name=base,
        document_base_name=stem,
        document_ext_name=ext[1:],
        document_dir_name=os.path.basename(doc_dir),
        document_workspace_folder=str(root) if root is not None else doc_dir,
        file_name=image_file_name,
    )


def resolve_variables(
    pattern: str,
    document_path: str | Path,
    image_file_name: str,
    workspace_folders: Iterable[str | Path] = (),
) -> str:
    """Substitute every recognised ``${name}`` token in ``pattern``."""
    values = path_variables(document_path, image_file_name, workspace_folders).as_dict()
    return substitute(pattern, values)


def substitute(pattern: str, values: dict[str, str]) -> str:
    """Replace ``${name}`` tokens found in ``values``; keep unknown tokens verbatim."""

    def _replace(match: re.Match[str]) -> str:
        return values.get(match.group(1), match.group(0))

    return VARIABLE_RE.sub(_replace, pattern)
