"""Capture newly saved images and correlate them with their document."""

import asyncio
import inspect
import logging
import os
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Sequence

from .config import FlowConfig
from .core.model import CandidateImage, ImageEvent
from .core.ports import Workspace
from .paths.predictor import DestinationPredictor
from .paths.variables import find_workspace_folder

logger = logging.getLogger("mdimageflow.capture")

MARKDOWN_GLOB = "*.{md,markdown}"
SAME_DIR_LIMIT = 50
RULE_SEARCH_LIMIT = 100
RULE_SEARCH_EXCLUDE = "**/node_modules/**"

ImageCallback = Callable[[ImageEvent], Awaitable[Any] | Any]


def common_prefix_length(a: Path, b: Path) -> int:
    """Number of leading path segments shared by two paths."""
    count = 0
    for x, y in zip(a.parts, b.parts):
        if x != y:
            break
        count += 1
    return count


def choose_owner(
    image_path: Path,
    candidates: Sequence[Path],
    focused: Path | None = None,
    open_documents: Sequence[Path] = (),
) -> Path | None:
    """
    Pick the document most likely to have saved ``image_path``.

    Order: the focused document, then the most recently opened candidate,
    then the candidate whose directory shares the longest path prefix with
    the image's directory (first seen wins a tie).
    """
    if not candidates:
        return None
    if len(candidates) == 1:
        return candidates[0]

    if focused is not None and focused in candidates:
        return focused

    for doc in reversed(open_documents):
        if doc in candidates:
            return doc

    image_dir = image_path.parent
    best = candidates[0]
    best_len = common_prefix_length(image_dir, best.parent)
    for candidate in candidates[1:]:
        length = common_prefix_length(image_dir, candidate.parent)
        if length > best_len:
            best, best_len = candidate, length
    return best


class CaptureCorrelator:
    """
    Debounce, stabilize and correlate image create/modify events.

    All handlers run on one asyncio loop. The debounce map and the in-flight
    set are the only shared state and are only touched from the handlers below.
    A path stays in flight until its handler returns, so events for the same
    write never run two handlers at once.
    """

    def __init__(
        self,
        config: FlowConfig,
        workspace: Workspace,
        on_image: ImageCallback,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.workspace = workspace
        self.on_image = on_image
        self.clock = clock
        self.sleep = sleep
        self.recent: dict[Path, CandidateImage] = {}
        self.in_flight: set[Path] = set()
        self.update_config(config)

    def update_config(self, config: FlowConfig) -> None:
        """Swap in a new configuration snapshot."""
        self.config = config
        self.predictor = DestinationPredictor(
            config.destination_rules, config.workspace_folders
        )
        self.extensions = {"." + e.lower() for e in config.watch.image_extensions}

    @property
    def debounce_window(self) -> float:
        return self.config.watch.debounce_ms / 1000

    def is_image_file(self, path: Path) -> bool:
        return path.suffix.lower() in self.extensions

    def _normalize(self, path: str | Path) -> Path:
        return Path(os.path.normpath(os.path.abspath(path)))

    def should_debounce(self, path: Path) -> bool:
        """
        Record a create for ``path`` unless one was accepted within the window
        or is still being handled.
        """
        if path in self.in_flight:
            return True
        now = self.clock()
        record = self.recent.get(path)
        if record is not None and now < record.debounce_expiry:
            return True

        record = CandidateImage(
            file_path=path,
            file_name=path.name,
            created_time=now,
            debounce_expiry=now + self.debounce_window,
        )
        self.recent[path] = record
        self._schedule_eviction(record)
        return False

    def _schedule_eviction(self, record: CandidateImage) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        loop.call_later(2 * self.debounce_window, self._evict, record)

    def _evict(self, record: CandidateImage) -> None:
        if self.recent.get(record.file_path) is record:
            del self.recent[record.file_path]

    async def handle_created(self, path: str | Path) -> ImageEvent | None:
        """Process a create event. Returns the emitted event, or None if dropped."""
        image_path = self._normalize(path)
        if not self.is_image_file(image_path):
            return None

        if self.should_debounce(image_path):
            logger.debug("Debounced duplicate event for %s", image_path)
            return None

        logger.debug("New image file: %s", image_path)

        self.in_flight.add(image_path)
        try:
            return await self._process(image_path)
        finally:
            self.in_flight.discard(image_path)

    async def _process(self, image_path: Path) -> ImageEvent | None:
        if not await self.wait_for_stable(image_path):
            logger.debug("Abandoned %s: file never became non-empty", image_path)
            return None

        try:
            event = await self._build_event(image_path)
        except OSError as e:
            logger.debug("Abandoned %s: %s", image_path, e)
            return None

        await self._emit(event)
        return event

    async def handle_modified(self, path: str | Path) -> ImageEvent | None:
        """Treat a modify as a create only right after the file was created."""
        image_path = self._normalize(path)
        record = self.recent.get(image_path)
        if record is None or self.clock() - record.created_time > 2 * self.debounce_window:
            return None
        return await self.handle_created(image_path)

    async def wait_for_stable(self, path: Path) -> bool:
        """Poll until the file has a non-zero size, then wait a little longer."""
        stab = self.config.watch.stabilization
        for _ in range(stab.max_attempts):
            try:
                size = os.stat(path).st_size
            except OSError:
                # Not there yet
                size = 0
            if size > 0:
                await self.sleep(stab.post_stable_delay_ms / 1000)
                return True
            await self.sleep(stab.interval_ms / 1000)
        return False

    async def find_candidates(self, image_path: Path) -> list[Path]:
        """Documents that could have saved ``image_path``, in discovery order."""
        found: list[Path] = []

        if not self.config.destination_rules:
            files = await self.workspace.find_files(
                image_path.parent, MARKDOWN_GLOB, SAME_DIR_LIMIT
            )
            for f in files:
                f = self._normalize(f)
                if f not in found:
                    found.append(f)
            return found

        roots = list(self.workspace.workspace_folders())
        for root in roots:
            for rule in self.config.destination_rules:
                try:
                    files = await self.workspace.find_files(
                        Path(root), rule.glob_pattern, RULE_SEARCH_LIMIT, RULE_SEARCH_EXCLUDE
                    )
                except ValueError as e:
                    logger.warning("Cannot search for %r: %s", rule.glob_pattern, e)
                    continue
                for f in files:
                    f = self._normalize(f)
                    if f in found:
                        continue
                    if self.predictor.is_expected_path(image_path, f, image_path.name):
                        found.append(f)
        return found

    async def _build_event(self, image_path: Path) -> ImageEvent:
        stat = os.stat(image_path)
        candidates = await self.find_candidates(image_path)

        focused = self.workspace.focused_document()
        owner = choose_owner(
            image_path,
            candidates,
            focused=self._normalize(focused) if focused is not None else None,
            open_documents=[self._normalize(d) for d in self.workspace.open_documents()],
        )
        logger.debug(
            "Correlated %s with %s (%d candidates)", image_path, owner, len(candidates)
        )

        root = find_workspace_folder(image_path, self.workspace.workspace_folders())
        relative = (
            os.path.relpath(image_path, root).replace("\\", "/")
            if root is not None
            else str(image_path)
        )
        created = getattr(stat, "st_birthtime", None) or stat.st_mtime

        return ImageEvent(
            file_path=image_path,
            file_name=image_path.name,
            relative_path=relative,
            created_time=datetime.fromtimestamp(created),
            markdown_file=owner,
        )

    async def _emit(self, event: ImageEvent) -> None:
        try:
            result = self.on_image(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Image handler failed for %s", event.file_path)
