"""Configuration loader for imageflow.toml."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore

from .core.model import DestinationRule
from .paths.patterns import DEFAULT_IMAGE_EXTENSIONS

CONFIG_FILE = "imageflow.toml"


@dataclass
class StabilizationConfig:
    """Polling budget while a new file is being written."""
    max_attempts: int = 10
    interval_ms: int = 50
    post_stable_delay_ms: int = 100


@dataclass
class WatchConfig:
    """File watch configuration."""
    debounce_ms: int = 500
    image_extensions: tuple[str, ...] = DEFAULT_IMAGE_EXTENSIONS
    stabilization: StabilizationConfig = field(default_factory=StabilizationConfig)


@dataclass
class UploadConfig:
    """Upload glue configuration."""
    command: str = ""
    delete_local_after_upload: bool = False


@dataclass
class ScoreWeights:
    """Link rewriter scoring weights."""
    file_name: int = 100
    contains_file_name: int = 50
    contains_relative_path: int = 75


@dataclass
class FlowConfig:
    """Complete imageflow configuration snapshot."""
    workspace_folders: list[Path]
    destination_rules: list[DestinationRule] = field(default_factory=list)
    watch: WatchConfig = field(default_factory=WatchConfig)
    upload: UploadConfig = field(default_factory=UploadConfig)
    scores: ScoreWeights = field(default_factory=ScoreWeights)
    source: Path | None = None


@dataclass
class ConfigCheck:
    """Result of checking a configuration for problems."""
    configured: bool
    has_destination: bool
    issues: list[str]


def parse_config(data: dict[str, Any], base_dir: Path | None = None) -> FlowConfig:
    """Build a FlowConfig from parsed TOML data."""
    base_dir = base_dir or Path.cwd()

    workspace_data = data.get("workspace", {})
    folders = [
        (base_dir / Path(f)).resolve() if not Path(f).is_absolute() else Path(f)
        for f in workspace_data.get("folders", ["."])
    ]

    # TOML tables keep insertion order, which is the rule order
    destination_data = data.get("destination", {})
    rules = [
        DestinationRule(glob_pattern=str(glob), destination_pattern=str(dest))
        for glob, dest in destination_data.items()
    ]

    watch_data = data.get("watch", {})
    stab_data = watch_data.get("stabilization", {})
    stabilization = StabilizationConfig(
        max_attempts=int(stab_data.get("max_attempts", 10)),
        interval_ms=int(stab_data.get("interval_ms", 50)),
        post_stable_delay_ms=int(stab_data.get("post_stable_delay_ms", 100)),
    )
    watch_config = WatchConfig(
        debounce_ms=int(watch_data.get("debounce_ms", 500)),
        image_extensions=tuple(
            e.lstrip(".").lower()
            for e in watch_data.get("image_extensions", DEFAULT_IMAGE_EXTENSIONS)
        ),
        stabilization=stabilization,
    )

    upload_data = data.get("upload", {})
    upload_config = UploadConfig(
        command=upload_data.get("command", ""),
        delete_local_after_upload=bool(upload_data.get("delete_local_after_upload", False)),
    )

    score_data = data.get("rewrite", {}).get("scores", {})
    scores = ScoreWeights(
        file_name=int(score_data.get("file_name", 100)),
        contains_file_name=int(score_data.get("contains_file_name", 50)),
        contains_relative_path=int(score_data.get("contains_relative_path", 75)),
    )

    return FlowConfig(
        workspace_folders=folders,
        destination_rules=rules,
        watch=watch_config,
        upload=upload_config,
        scores=scores,
    )


def load_config(config_path: Path | None = None, workspace_path: Path | None = None) -> FlowConfig:
    """
    Load configuration from imageflow.toml.

    Search order:
    1. config_path (if provided)
    2. cwd/imageflow.toml
    3. workspace_path/imageflow.toml

    Relative workspace folders are resolved against the directory holding the
    config file. With no file at all, the workspace is ``workspace_path`` or cwd.

    Args:
        config_path: Explicit path to config file
        workspace_path: Workspace root for fallback search

    Returns:
        FlowConfig with resolved settings
    """
    toml_data: dict[str, Any] = {}
    source: Path | None = None

    search_paths = []
    if config_path:
        search_paths.append(config_path)
    search_paths.append(Path.cwd() / CONFIG_FILE)
    if workspace_path:
        search_paths.append(workspace_path / CONFIG_FILE)

    for path in search_paths:
        if path.exists():
            with open(path, "rb") as f:
                toml_data = tomllib.load(f)
            source = path
            break

    if source is not None:
        config = parse_config(toml_data, base_dir=source.parent.resolve())
    else:
        config = parse_config({}, base_dir=(workspace_path or Path.cwd()).resolve())

    if workspace_path is not None and "folders" not in toml_data.get("workspace", {}):
        config.workspace_folders = [workspace_path.resolve()]

    config.source = source
    return config


def check_configuration(config: FlowConfig) -> ConfigCheck:
    """Report configuration gaps; none of them stop the watcher."""
    issues: list[str] = []
    has_destination = bool(config.destination_rules)

    if not has_destination:
        issues.append(
            "No [destination] rules configured; images are expected beside their document"
        )

    missing = [f for f in config.workspace_folders if not f.is_dir()]
    for folder in missing:
        issues.append(f"Workspace folder does not exist: {folder}")
    if not config.workspace_folders:
        issues.append("No workspace folders configured")

    if not config.upload.command:
        issues.append("No upload command configured; detected images will not be uploaded")

    if config.watch.debounce_ms <= 0:
        issues.append("watch.debounce_ms must be positive")

    return ConfigCheck(
        configured=not missing and bool(config.workspace_folders) and bool(config.upload.command),
        has_destination=has_destination,
        issues=issues,
    )
