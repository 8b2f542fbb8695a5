import asyncio
import os
from pathlib import Path
from typing import Iterable, Sequence

from ..core.ports import DocumentStore, Workspace
from ..paths.globs import compile_glob

SKIP_DIRS = {"node_modules", ".git"}


class FsWorkspace(Workspace):
    """Workspace queries answered from the local filesystem.

    Without an editor attached, focus and open documents are whatever the
    caller tells us (e.g. ``imageflow watch --focus notes.md``).
    """

    def __init__(
        self,
        folders: Iterable[Path],
        focused: Path | None = None,
        open_documents: Sequence[Path] = (),
    ):
        self.folders = [Path(f) for f in folders]
        self.focused = focused
        self.opened = list(open_documents)

    def workspace_folders(self) -> Sequence[Path]:
        return self.folders

    def focused_document(self) -> Path | None:
        return self.focused

    def open_documents(self) -> Sequence[Path]:
        return self.opened

    async def find_files(
        self,
        root: Path,
        pattern: str,
        limit: int,
        exclude: str | None = None,
    ) -> list[Path]:
        # Compile here so a bad glob raises on the caller's side
        compile_glob(pattern)
        if exclude:
            compile_glob(exclude)
        return await asyncio.to_thread(self._walk, root, pattern, limit, exclude)

    def _walk(
        self,
        root: Path,
        pattern: str,
        limit: int,
        exclude: str | None,
    ) -> list[Path]:
        regex = compile_glob(pattern)
        exclude_regex = compile_glob(exclude) if exclude else None
        found: list[Path] = []
        if not root.is_dir():
            return found
        # Single-segment patterns only ever match direct children
        recursive = "/" in pattern

        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(
                d for d in dirnames if d not in SKIP_DIRS and not d.startswith(".")
            ) if recursive else []
            for name in sorted(filenames):
                path = Path(dirpath) / name
                rel = path.relative_to(root).as_posix()
                if not regex.match(rel):
                    continue
                if exclude_regex is not None and exclude_regex.match(rel):
                    continue
                found.append(path)
                if len(found) >= limit:
                    return found
        return found


class FsDocuments(DocumentStore):
    def read_text(self, path: Path) -> str | None:
        if not path.exists():
            return None
        with open(path, encoding="utf-8", newline="") as f:
            return f.read()

    def write_text(self, path: Path, text: str) -> None:
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(text)
