"""Predict where the host editor saves a pasted or dropped image."""

import logging
import os
from pathlib import Path
from typing import Iterable, Sequence

from ..core.model import DestinationRule, Prediction
from .globs import GlobError, glob_match
from .variables import find_workspace_folder, path_variables, substitute

logger = logging.getLogger("mdimageflow.paths")


class NoWorkspaceFolder(Exception):
    """The document is not inside any known workspace folder."""


def _is_directory_pattern(resolved: str) -> bool:
    return resolved.endswith("/") or resolved.endswith(os.sep)


def _normalize(path: str | Path) -> Path:
    return Path(os.path.normpath(os.path.abspath(path)))


class DestinationPredictor:
    """
    Reproduce the host's save-path computation from an ordered rule table.

    Rules are tried in table order against the document's workspace-relative
    path; the first match wins regardless of how specific later rules are.
    Without a match the image lands beside the document.
    """

    def __init__(
        self,
        rules: Sequence[DestinationRule] = (),
        workspace_folders: Iterable[str | Path] = (),
    ):
        self.rules = list(rules)
        self.workspace_folders = [Path(f) for f in workspace_folders]

    def predict(self, document_path: str | Path, image_file_name: str) -> Prediction:
        """Predict the absolute save path. Never raises."""
        try:
            matched = self._match_rules(document_path, image_file_name)
        except NoWorkspaceFolder:
            logger.debug("No workspace folder for %s, using default location", document_path)
            matched = None
        if matched is not None:
            return matched
        return self.default_prediction(document_path, image_file_name)

    def default_prediction(self, document_path: str | Path, image_file_name: str) -> Prediction:
        """The host's default: same directory as the document."""
        doc = _normalize(document_path)
        return Prediction(
            destination_path=_normalize(doc.parent / image_file_name),
            is_directory=False,
            variables=path_variables(doc, image_file_name, self.workspace_folders),
        )

    def _match_rules(self, document_path: str | Path, image_file_name: str) -> Prediction | None:
        if not self.rules:
            return None

        root = find_workspace_folder(document_path, self.workspace_folders)
        if root is None:
            raise NoWorkspaceFolder(str(document_path))

        doc = _normalize(document_path)
        relative = os.path.relpath(doc, root).replace("\\", "/")
        variables = path_variables(doc, image_file_name, self.workspace_folders)

        for rule in self.rules:
            try:
                if not glob_match(relative, rule.glob_pattern):
                    continue
            except GlobError as e:
                logger.warning("Skipping destination rule: %s", e)
                continue

            resolved = substitute(rule.destination_pattern, variables.as_dict())
            is_directory = _is_directory_pattern(resolved)
            final = os.path.join(resolved, image_file_name) if is_directory else resolved
            if not os.path.isabs(final):
                final = os.path.join(doc.parent, final)

            return Prediction(
                destination_path=_normalize(final),
                is_directory=is_directory,
                variables=variables,
                matched_pattern=rule.glob_pattern,
            )

        return None

    def is_expected_path(
        self,
        actual_path: str | Path,
        document_path: str | Path,
        image_file_name: str | None = None,
    ) -> bool:
        """Check whether ``actual_path`` is where ``document_path`` would save the image."""
        actual = _normalize(actual_path)
        name = image_file_name or actual.name
        return self.predict(document_path, name).destination_path == actual
