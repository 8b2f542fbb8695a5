"""Tests for watch mode functionality."""

import asyncio
import threading
import time
from pathlib import Path

import pytest
from watchdog.events import FileCreatedEvent, FileModifiedEvent, FileMovedEvent

from mdimageflow.adapters.fs_workspace import FsWorkspace
from mdimageflow.capture import CaptureCorrelator
from mdimageflow.config import FlowConfig
from mdimageflow.core.model import DestinationRule
from mdimageflow.watch import (
    ConfigFileHandler,
    ImageEventHandler,
    ImageWatcher,
    _event_json,
    watch_config_file,
)


class RecordingCorrelator:
    """Stands in for CaptureCorrelator and records what it is asked to do."""

    def __init__(self):
        self.calls: list[tuple[str, Path]] = []
        self.configs: list[FlowConfig] = []

    async def handle_created(self, path):
        self.calls.append(("created", path))

    async def handle_modified(self, path):
        self.calls.append(("modified", path))

    def update_config(self, config):
        self.configs.append(config)


@pytest.fixture
def loop():
    """An event loop running in a background thread."""
    loop = asyncio.new_event_loop()
    thread = threading.Thread(target=loop.run_forever, daemon=True)
    thread.start()
    yield loop
    loop.call_soon_threadsafe(loop.stop)
    thread.join(timeout=5)
    loop.close()


def _flush(loop):
    asyncio.run_coroutine_threadsafe(asyncio.sleep(0), loop).result(timeout=5)


def test_handler_forwards_matching_events(tmp_path, loop):
    """Test that image events inside the root reach the correlator."""
    correlator = RecordingCorrelator()
    handler = ImageEventHandler(tmp_path, ["**/*.{png,jpg}"], correlator, loop)

    handler.on_created(FileCreatedEvent(str(tmp_path / "a" / "shot.png")))
    handler.on_modified(FileModifiedEvent(str(tmp_path / "shot.jpg")))
    handler.on_moved(FileMovedEvent(str(tmp_path / "tmp123"), str(tmp_path / "moved.png")))
    _flush(loop)

    assert correlator.calls == [
        ("created", tmp_path / "a" / "shot.png"),
        ("modified", tmp_path / "shot.jpg"),
        ("created", tmp_path / "moved.png"),
    ]


def test_handler_skips_unwatched_files(tmp_path, loop):
    """Test pattern, hidden, temp and out-of-root filtering."""
    correlator = RecordingCorrelator()
    handler = ImageEventHandler(tmp_path, ["**/images/*.png"], correlator, loop)

    handler.on_created(FileCreatedEvent(str(tmp_path / "docs" / "shot.png")))
    handler.on_created(FileCreatedEvent(str(tmp_path / "images" / ".hidden.png")))
    handler.on_created(FileCreatedEvent(str(tmp_path / "images" / "shot.png~")))
    handler.on_created(FileCreatedEvent(str(tmp_path / "images" / "notes.md")))
    handler.on_created(FileCreatedEvent("/somewhere/else/images/shot.png"))
    handler.on_created(FileCreatedEvent(str(tmp_path / "docs" / "images" / "ok.png")))
    _flush(loop)

    assert correlator.calls == [("created", tmp_path / "docs" / "images" / "ok.png")]


def test_watcher_reports_missing_folder(tmp_path):
    """Test that a missing workspace folder is a failed subscription, not an error."""
    loop = asyncio.new_event_loop()
    try:
        config = FlowConfig(workspace_folders=[tmp_path / "missing"])
        watcher = ImageWatcher(config, RecordingCorrelator(), loop)

        subscriptions = watcher.start()

        assert len(subscriptions) == 1
        assert not subscriptions[0].ok
        assert "not found" in subscriptions[0].error
        assert watcher.observer is None
        watcher.stop()
    finally:
        loop.close()


def test_watcher_partial_success(tmp_path, loop):
    """Test that one good folder keeps watching when another is missing."""
    config = FlowConfig(
        workspace_folders=[tmp_path, tmp_path / "missing"],
        destination_rules=[DestinationRule("**/*.md", "images/")],
    )
    watcher = ImageWatcher(config, RecordingCorrelator(), loop)

    subscriptions = watcher.start()
    try:
        assert [s.ok for s in subscriptions] == [True, False]
        assert subscriptions[0].patterns == ("**/images/*.{png,jpg,jpeg,gif,webp,svg}",)
        assert watcher.observer is not None
    finally:
        watcher.stop()


def test_watcher_reload_applies_new_rules(tmp_path, loop):
    """Test that reloading resubscribes with patterns from the new rules."""
    correlator = RecordingCorrelator()
    watcher = ImageWatcher(FlowConfig(workspace_folders=[tmp_path]), correlator, loop)
    watcher.start()
    new = FlowConfig(
        workspace_folders=[tmp_path],
        destination_rules=[DestinationRule("**/*.md", "assets/")],
    )

    try:
        subscriptions = watcher.reload(new)

        assert [s.ok for s in subscriptions] == [True]
        assert subscriptions[0].patterns == ("**/assets/*.{png,jpg,jpeg,gif,webp,svg}",)
        assert watcher.config is new
        assert correlator.configs == [new]
        assert watcher.observer is not None
    finally:
        watcher.stop()


def test_config_handler_coalesces_writes(tmp_path, loop):
    """Test that a burst of writes to the config file reloads once."""
    config_path = tmp_path / "imageflow.toml"
    config_path.write_text("")
    fired = threading.Event()
    calls = []

    def on_change():
        calls.append(1)
        fired.set()

    handler = ConfigFileHandler(config_path, on_change, loop, delay=0.05)

    handler.on_any_event(FileModifiedEvent(str(config_path)))
    handler.on_any_event(FileModifiedEvent(str(config_path)))
    handler.on_any_event(FileModifiedEvent(str(tmp_path / "notes.md")))

    assert fired.wait(timeout=5)
    time.sleep(0.2)
    assert calls == [1]


def test_config_handler_follows_atomic_replace(tmp_path, loop):
    """Test that an editor saving through a rename still triggers a reload."""
    config_path = tmp_path / "imageflow.toml"
    fired = threading.Event()
    handler = ConfigFileHandler(config_path, fired.set, loop, delay=0.01)

    handler.on_any_event(FileMovedEvent(str(tmp_path / ".imageflow.toml.swp"), str(config_path)))

    assert fired.wait(timeout=5)


def test_watch_config_file_sees_edits(tmp_path, loop):
    """Test the real observer on the config file's directory."""
    config_path = tmp_path / "imageflow.toml"
    config_path.write_text("")
    fired = threading.Event()
    observer = watch_config_file(config_path, fired.set, loop, delay=0.05)

    try:
        time.sleep(0.2)
        config_path.write_text('[watch]\ndebounce_ms = 100\n')

        assert fired.wait(timeout=5)
    finally:
        observer.stop()
        observer.join()


def test_watch_end_to_end(tmp_path, loop):
    """Test that a real file write is detected and correlated."""
    doc = tmp_path / "note.md"
    doc.write_text("![](shot.png)\n")
    config = FlowConfig(workspace_folders=[tmp_path])
    events = []
    correlator = CaptureCorrelator(config, FsWorkspace([tmp_path]), events.append)
    watcher = ImageWatcher(config, correlator, loop)
    watcher.start()

    try:
        time.sleep(0.2)
        (tmp_path / "shot.png").write_bytes(b"\x89PNG\r\n\x1a\n")

        deadline = time.time() + 5
        while not events and time.time() < deadline:
            time.sleep(0.05)
    finally:
        watcher.stop()

    assert len(events) == 1
    assert events[0].markdown_file == doc
    assert events[0].relative_path == "shot.png"


def test_event_json(tmp_path):
    """Test the JSON line printed for each event."""
    from datetime import datetime
    import json

    from mdimageflow.core.model import ImageEvent

    event = ImageEvent(
        file_path=tmp_path / "a.png",
        file_name="a.png",
        relative_path="a.png",
        created_time=datetime(2024, 1, 2, 3, 4, 5),
        markdown_file=None,
    )

    data = json.loads(_event_json(event, url="https://cdn/a.png"))

    assert data["type"] == "image"
    assert data["markdown_file"] is None
    assert data["created"] == "2024-01-02T03:04:05"
    assert data["url"] == "https://cdn/a.png"
