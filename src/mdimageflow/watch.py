"""Watch mode for imageflow - detect pasted images and hand them to the correlator."""

import asyncio
import json
import logging
import signal
import sys
from concurrent.futures import Future
from pathlib import Path
from typing import Any, Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .capture import CaptureCorrelator
from .config import FlowConfig
from .core.model import ImageEvent, Subscription
from .paths.globs import GlobError, compile_glob
from .paths.patterns import generate_watch_patterns

logger = logging.getLogger("mdimageflow.watch")


class ImageEventHandler(FileSystemEventHandler):
    """Filter watchdog events by watch pattern and forward them to the loop."""

    def __init__(
        self,
        root: Path,
        patterns: list[str],
        correlator: CaptureCorrelator,
        loop: asyncio.AbstractEventLoop,
    ):
        super().__init__()
        self.root = root
        self.patterns = patterns
        self.regexes = [compile_glob(p) for p in patterns]
        self.correlator = correlator
        self.loop = loop

    def _should_skip(self, path: Path) -> bool:
        """Check if file should be skipped."""
        name = path.name

        # Skip hidden and temp/swap files
        if name.startswith(".") or name.endswith("~") or name.endswith(".tmp"):
            return True

        try:
            rel = path.relative_to(self.root).as_posix()
        except ValueError:
            return True

        return not any(r.match(rel) for r in self.regexes)

    def _submit(self, coro: Any) -> Future:
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        future.add_done_callback(_log_failure)
        return future

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle file creation."""
        if event.is_directory:
            return

        path = Path(str(event.src_path))
        if not self._should_skip(path):
            self._submit(self.correlator.handle_created(path))

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle file modification."""
        if event.is_directory:
            return

        path = Path(str(event.src_path))
        if not self._should_skip(path):
            self._submit(self.correlator.handle_modified(path))

    def on_moved(self, event: FileSystemEvent) -> None:
        """A temp file renamed into place counts as a create."""
        if event.is_directory:
            return

        path = Path(str(event.dest_path))
        if not self._should_skip(path):
            self._submit(self.correlator.handle_created(path))


def _log_failure(future: Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Image event handling failed: %s", exc, exc_info=exc)


class ImageWatcher:
    """One recursive watchdog subscription per workspace folder."""

    def __init__(
        self,
        config: FlowConfig,
        correlator: CaptureCorrelator,
        loop: asyncio.AbstractEventLoop,
    ):
        self.config = config
        self.correlator = correlator
        self.loop = loop
        self.observer: Any = None
        self.subscriptions: list[Subscription] = []

    def start(self) -> list[Subscription]:
        """
        Subscribe to every workspace folder.

        Failures are reported per folder; whatever succeeded keeps running.
        """
        patterns = generate_watch_patterns(
            self.config.destination_rules, self.config.watch.image_extensions
        )
        valid: list[str] = []
        results: list[Subscription] = []
        for pattern in patterns:
            try:
                compile_glob(pattern)
                valid.append(pattern)
            except GlobError as e:
                logger.error("Ignoring watch pattern: %s", e)
                results.append(Subscription(root=Path("."), patterns=(pattern,), ok=False, error=str(e)))

        if not self.config.workspace_folders:
            error = "No workspace folder to watch"
            logger.error(error)
            results.append(Subscription(root=Path.cwd(), ok=False, error=error))

        observer = Observer()
        scheduled = 0
        for root in self.config.workspace_folders:
            if not root.is_dir():
                error = f"Workspace folder not found: {root}"
                logger.error(error)
                results.append(Subscription(root=root, patterns=tuple(valid), ok=False, error=error))
                continue
            handler = ImageEventHandler(root, valid, self.correlator, self.loop)
            try:
                observer.schedule(handler, str(root), recursive=True)
            except OSError as e:
                logger.error("Cannot watch %s: %s", root, e)
                results.append(Subscription(root=root, patterns=tuple(valid), ok=False, error=str(e)))
                continue
            scheduled += 1
            logger.info("Watching %s for %s", root, ", ".join(valid))
            results.append(Subscription(root=root, patterns=tuple(valid)))

        if scheduled:
            observer.start()
            self.observer = observer

        self.subscriptions = results
        return results

    def reload(self, config: FlowConfig) -> list[Subscription]:
        """Apply a new configuration snapshot and resubscribe."""
        self.stop()
        self.config = config
        self.correlator.update_config(config)
        return self.start()

    def stop(self) -> None:
        if self.observer is not None:
            self.observer.stop()
            self.observer.join()
            self.observer = None


class ConfigFileHandler(FileSystemEventHandler):
    """Call ``on_change`` on the loop once writes to one file settle."""

    def __init__(
        self,
        path: Path,
        on_change: Callable[[], None],
        loop: asyncio.AbstractEventLoop,
        delay: float = 0.2,
    ):
        super().__init__()
        self.path = path.resolve()
        self.on_change = on_change
        self.loop = loop
        self.delay = delay
        self._pending: asyncio.TimerHandle | None = None

    def _is_config(self, event: FileSystemEvent) -> bool:
        if event.is_directory:
            return False
        paths = [event.src_path]
        if event.event_type == "moved":
            paths.append(event.dest_path)
        return any(Path(str(p)).resolve() == self.path for p in paths)

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in ("created", "modified", "moved"):
            return
        if self._is_config(event):
            self.loop.call_soon_threadsafe(self._schedule)

    def _schedule(self) -> None:
        # Editors often write a file in several steps; reload once at the end
        if self._pending is not None:
            self._pending.cancel()
        self._pending = self.loop.call_later(self.delay, self._fire)

    def _fire(self) -> None:
        self._pending = None
        self.on_change()


def watch_config_file(
    path: Path,
    on_change: Callable[[], None],
    loop: asyncio.AbstractEventLoop,
    delay: float = 0.2,
) -> Any:
    """Start an observer on the directory holding ``path``."""
    handler = ConfigFileHandler(path, on_change, loop, delay)
    observer = Observer()
    observer.schedule(handler, str(handler.path.parent), recursive=False)
    observer.start()
    return observer


def _event_json(event: ImageEvent, **extra: Any) -> str:
    data = {
        "type": "image",
        "file": str(event.file_path),
        "relative_path": event.relative_path,
        "markdown_file": str(event.markdown_file) if event.markdown_file else None,
        "created": event.created_time.isoformat(),
    }
    data.update(extra)
    return json.dumps(data)


async def run_watch(
    config: FlowConfig,
    workspace: Any,
    flow: Any = None,
    quiet: bool = False,
    json_output: bool = False,
    reload_config: Callable[[], FlowConfig] | None = None,
) -> int:
    """
    Watch the workspace until interrupted.

    Args:
        config: Configuration snapshot
        workspace: Workspace query capability
        flow: Optional ImageFlow that uploads and rewrites each event
        quiet: Suppress output
        json_output: Output JSON events instead of human-readable
        reload_config: Reads the configuration again; when given, changes to
            the config file are applied without restarting

    Returns:
        Exit code
    """
    loop = asyncio.get_running_loop()
    stopped = asyncio.Event()

    async def handle_image(event: ImageEvent) -> None:
        result = await flow.handle(event) if flow is not None else None
        if json_output:
            extra: dict[str, Any] = {}
            if result is not None and result.upload is not None:
                extra["url"] = result.upload.url
                extra["uploaded"] = result.upload.success
            if result is not None and result.rewrite is not None:
                extra["rewritten"] = result.rewrite.success
            print(_event_json(event, **extra), flush=True)
        elif not quiet:
            owner = event.markdown_file or "(no matching document)"
            print(f"Image: {event.relative_path} -> {owner}", flush=True)
            if result is not None and result.rewrite is not None and result.rewrite.success:
                print(
                    f"  Linked {result.upload.url} at "
                    f"{result.rewrite.line + 1}:{result.rewrite.column + 1}",
                    flush=True,
                )

    correlator = CaptureCorrelator(config, workspace, handle_image)
    watcher = ImageWatcher(config, correlator, loop)
    subscriptions = watcher.start()

    failed = [s for s in subscriptions if not s.ok]
    for sub in failed:
        print(f"Warning: {sub.error}", file=sys.stderr, flush=True)
    if len(failed) == len(subscriptions):
        print("Error: nothing to watch", file=sys.stderr)
        return 1

    def apply_config() -> None:
        try:
            new = reload_config()
        except (OSError, ValueError) as e:
            logger.error("Keeping the previous configuration, reload failed: %s", e)
            return
        for sub in watcher.reload(new):
            if not sub.ok:
                print(f"Warning: {sub.error}", file=sys.stderr, flush=True)
        if flow is not None:
            flow.update_config(new)
        logger.info("Reloaded configuration from %s", new.source)

    config_observer = None
    if reload_config is not None and config.source is not None:
        try:
            config_observer = watch_config_file(config.source, apply_config, loop)
        except OSError as e:
            logger.warning("Cannot watch %s for changes: %s", config.source, e)

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stopped.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            signal.signal(signum, lambda *_: loop.call_soon_threadsafe(stopped.set))

    if not quiet and not json_output:
        print(f"Watching {', '.join(str(s.root) for s in subscriptions if s.ok)} "
              f"(debounce: {config.watch.debounce_ms}ms)", flush=True)
        print("Press Ctrl+C to stop", flush=True)

    try:
        await stopped.wait()
    finally:
        watcher.stop()
        if config_observer is not None:
            config_observer.stop()
            config_observer.join()

    if not quiet and not json_output:
        print("Watch stopped", flush=True)

    return 0


def watch_workspace(
    config: FlowConfig,
    workspace: Any,
    flow: Any = None,
    quiet: bool = False,
    json_output: bool = False,
    reload_config: Callable[[], FlowConfig] | None = None,
) -> int:
    """Blocking entry point for the CLI."""
    return asyncio.run(run_watch(config, workspace, flow, quiet, json_output, reload_config))
