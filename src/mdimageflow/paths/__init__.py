"""Destination prediction for pasted images."""

from .globs import GlobError, glob_match
from .patterns import DEFAULT_IMAGE_EXTENSIONS, extension_glob, generate_watch_patterns
from .predictor import DestinationPredictor, NoWorkspaceFolder
from .variables import find_workspace_folder, path_variables, resolve_variables

__all__ = [
    "DEFAULT_IMAGE_EXTENSIONS",
    "DestinationPredictor",
    "GlobError",
    "NoWorkspaceFolder",
    "extension_glob",
    "find_workspace_folder",
    "generate_watch_patterns",
    "glob_match",
    "path_variables",
    "resolve_variables",
]
