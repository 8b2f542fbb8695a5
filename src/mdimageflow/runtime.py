"""Runtime wiring helper for CLI applications."""

from dataclasses import dataclass
from pathlib import Path

from .adapters.command_uploader import CommandUploader
from .adapters.fs_workspace import FsDocuments, FsWorkspace
from .config import FlowConfig, load_config
from .paths.predictor import DestinationPredictor
from .rewrite import LinkRewriter


@dataclass
class Runtime:
    """Container for all wired components."""
    workspace: FsWorkspace
    documents: FsDocuments
    predictor: DestinationPredictor
    rewriter: LinkRewriter
    uploader: CommandUploader
    config: FlowConfig


def build_runtime(
    workspace_path: Path | None = None,
    config_path: Path | None = None,
    focused: Path | None = None,
    upload_command: str | None = None,
) -> Runtime:
    """Build and wire all components for a workspace."""
    config = load_config(config_path=config_path, workspace_path=workspace_path)

    if upload_command is not None:
        config.upload.command = upload_command

    focused = focused.resolve() if focused is not None else None
    workspace = FsWorkspace(
        config.workspace_folders,
        focused=focused,
        open_documents=[focused] if focused is not None else [],
    )
    documents = FsDocuments()
    predictor = DestinationPredictor(config.destination_rules, config.workspace_folders)
    rewriter = LinkRewriter(documents, config.scores)
    uploader = CommandUploader(config.upload.command)

    return Runtime(
        workspace=workspace,
        documents=documents,
        predictor=predictor,
        rewriter=rewriter,
        uploader=uploader,
        config=config,
    )
