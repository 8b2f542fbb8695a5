from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path


@dataclass(frozen=True)
class DestinationRule:
    glob_pattern: str  # matched against the workspace-relative document path
    destination_pattern: str  # may contain ${...} variables


@dataclass(frozen=True)
class PathVariables:
    document_file_name: str
    document_base_name: str
    document_ext_name: str  # without the leading dot
    document_dir_name: str
    document_workspace_folder: str
    file_name: str

    def as_dict(self) -> dict[str, str]:
        """Variables keyed by the token names used in destination patterns."""
        return {
            "documentFileName": self.document_file_name,
            "documentBaseName": self.document_base_name,
            "documentExtName": self.document_ext_name,
            "documentDirName": self.document_dir_name,
            "documentWorkspaceFolder": self.document_workspace_folder,
            "fileName": self.file_name,
        }


@dataclass(frozen=True)
class Prediction:
    destination_path: Path  # absolute, normalized
    is_directory: bool
    variables: PathVariables
    matched_pattern: str | None = None


@dataclass
class CandidateImage:
    file_path: Path
    file_name: str
    created_time: float  # clock seconds
    debounce_expiry: float


@dataclass(frozen=True)
class ImageEvent:
    file_path: Path
    file_name: str
    relative_path: str
    created_time: datetime
    markdown_file: Path | None = None


@dataclass(frozen=True)
class Subscription:
    root: Path
    patterns: tuple[str, ...] = ()
    ok: bool = True
    error: str | None = None


@dataclass(frozen=True)
class RewriteOutcome:
    success: bool
    line: int | None = None
    column: int | None = None
    error: str | None = None


@dataclass(frozen=True)
class UploadResult:
    success: bool
    provider: str
    url: str | None = None
    error: str | None = None


@dataclass
class LocalImage:
    full_match: str
    alt_text: str
    image_path: str  # as written in the document
    start_line: int
    start_column: int
    end_line: int
    end_column: int
    absolute_path: Path | None = None
    exists: bool = False
