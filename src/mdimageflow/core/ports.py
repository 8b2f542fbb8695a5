from pathlib import Path
from typing import Protocol, Sequence
from .model import UploadResult


class Workspace(Protocol):
    """
    Host editor queries: project roots, focus and open documents, file search.
    """

    def workspace_folders(self) -> Sequence[Path]:
        pass

    def focused_document(self) -> Path | None:
        pass

    def open_documents(self) -> Sequence[Path]:
        """Open documents in the order they were opened, oldest first."""
        pass

    async def find_files(
        self,
        root: Path,
        pattern: str,
        limit: int,
        exclude: str | None = None,
    ) -> list[Path]:
        pass


class DocumentStore(Protocol):
    """
    Read and persist document text. Positions are 0-based lines/columns.
    """

    def read_text(self, path: Path) -> str | None:
        pass

    def write_text(self, path: Path, text: str) -> None:
        pass


class Uploader(Protocol):
    name: str

    async def upload(self, path: Path) -> UploadResult:
        pass
