"""Tests for image capture and document correlation."""

import asyncio
from pathlib import Path

from mdimageflow.adapters.fs_workspace import FsWorkspace
from mdimageflow.capture import CaptureCorrelator, choose_owner, common_prefix_length
from mdimageflow.config import FlowConfig
from mdimageflow.core.model import DestinationRule

PNG = b"\x89PNG\r\n\x1a\n"


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class FakeSleep:
    """Records sleep calls; runs an optional hook on the n-th call."""

    def __init__(self, hooks=None):
        self.calls: list[float] = []
        self.hooks = hooks or {}

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        hook = self.hooks.get(len(self.calls))
        if hook:
            hook()


def make_correlator(tmp_path, rules=(), focused=None, open_documents=(), sleep=None, clock=None):
    config = FlowConfig(workspace_folders=[tmp_path], destination_rules=list(rules))
    workspace = FsWorkspace([tmp_path], focused=focused, open_documents=open_documents)
    events = []
    correlator = CaptureCorrelator(
        config,
        workspace,
        events.append,
        clock=clock or FakeClock(),
        sleep=sleep or FakeSleep(),
    )
    return correlator, events


def test_choose_owner_no_candidates():
    """Test that no candidates means no owner."""
    assert choose_owner(Path("/ws/img.png"), []) is None


def test_choose_owner_single_candidate():
    """Test that a single candidate is the owner."""
    assert choose_owner(Path("/ws/img.png"), [Path("/ws/a.md")]) == Path("/ws/a.md")


def test_choose_owner_prefers_focused():
    """Test that the focused document wins."""
    candidates = [Path("/ws/a.md"), Path("/ws/b.md")]

    owner = choose_owner(
        Path("/ws/img.png"), candidates,
        focused=Path("/ws/b.md"), open_documents=[Path("/ws/a.md")],
    )

    assert owner == Path("/ws/b.md")


def test_choose_owner_ignores_focus_outside_candidates():
    """Test that focus on an unrelated document falls through to open documents."""
    candidates = [Path("/ws/a.md"), Path("/ws/b.md")]

    owner = choose_owner(
        Path("/ws/img.png"), candidates,
        focused=Path("/ws/other.md"),
        open_documents=[Path("/ws/b.md"), Path("/ws/a.md"), Path("/ws/other.md")],
    )

    assert owner == Path("/ws/a.md")


def test_choose_owner_longest_common_prefix():
    """Test the directory proximity tie-break."""
    candidates = [Path("/ws/docs/b/y.md"), Path("/ws/docs/a/x.md")]

    owner = choose_owner(Path("/ws/docs/a/img.png"), candidates)

    assert owner == Path("/ws/docs/a/x.md")


def test_choose_owner_tie_keeps_first_seen():
    """Test that equal proximity keeps discovery order."""
    candidates = [Path("/ws/docs/b/y.md"), Path("/ws/docs/c/z.md")]

    owner = choose_owner(Path("/ws/docs/a/img.png"), candidates)

    assert owner == Path("/ws/docs/b/y.md")


def test_common_prefix_length():
    """Test segment prefix counting."""
    assert common_prefix_length(Path("/ws/docs/a"), Path("/ws/docs/b")) == 3
    assert common_prefix_length(Path("/ws/docs"), Path("/other")) == 1


def test_created_event_correlates_with_sibling_document(tmp_path):
    """Test the no-rules mode: the only Markdown file beside the image owns it."""
    doc = tmp_path / "note.md"
    doc.write_text("![](shot.png)\n")
    image = tmp_path / "shot.png"
    image.write_bytes(PNG)
    correlator, events = make_correlator(tmp_path)

    event = asyncio.run(correlator.handle_created(image))

    assert event is not None
    assert events == [event]
    assert event.markdown_file == doc
    assert event.file_name == "shot.png"
    assert event.relative_path == "shot.png"


def test_created_event_without_candidates_is_still_reported(tmp_path):
    """Test that an image with no owner is forwarded with markdown_file None."""
    image = tmp_path / "orphan.png"
    image.write_bytes(PNG)
    correlator, events = make_correlator(tmp_path)

    event = asyncio.run(correlator.handle_created(image))

    assert event is not None
    assert event.markdown_file is None
    assert len(events) == 1


def test_focused_document_wins_among_siblings(tmp_path):
    """Test that the focused document is chosen among several candidates."""
    (tmp_path / "a.md").write_text("a")
    (tmp_path / "b.md").write_text("b")
    image = tmp_path / "img.png"
    image.write_bytes(PNG)
    correlator, events = make_correlator(tmp_path, focused=tmp_path / "b.md")

    event = asyncio.run(correlator.handle_created(image))

    assert event.markdown_file == tmp_path / "b.md"


def test_non_image_files_are_ignored(tmp_path):
    """Test the image extension filter."""
    path = tmp_path / "notes.txt"
    path.write_text("hello")
    correlator, events = make_correlator(tmp_path)

    assert asyncio.run(correlator.handle_created(path)) is None
    assert events == []


def test_duplicate_events_within_window_are_debounced(tmp_path):
    """Test that two creates within the window cause one correlation."""
    image = tmp_path / "img.png"
    image.write_bytes(PNG)
    clock = FakeClock()
    correlator, events = make_correlator(tmp_path, clock=clock)

    async def run():
        first = await correlator.handle_created(image)
        clock.now = 0.3
        second = await correlator.handle_created(image)
        return first, second

    first, second = asyncio.run(run())

    assert first is not None
    assert second is None
    assert len(events) == 1


def test_event_after_window_is_processed_again(tmp_path):
    """Test that the debounce window expires."""
    image = tmp_path / "img.png"
    image.write_bytes(PNG)
    clock = FakeClock()
    correlator, events = make_correlator(tmp_path, clock=clock)

    async def run():
        await correlator.handle_created(image)
        clock.now = 0.6
        await correlator.handle_created(image)

    asyncio.run(run())

    assert len(events) == 2


def test_modified_without_recent_create_is_ignored(tmp_path):
    """Test that edits to pre-existing images are not processed."""
    image = tmp_path / "old.png"
    image.write_bytes(PNG)
    correlator, events = make_correlator(tmp_path)

    assert asyncio.run(correlator.handle_modified(image)) is None
    assert events == []


def test_modified_after_recent_create(tmp_path):
    """Test the modify path: inside the window it is a duplicate, later it is reprocessed."""
    image = tmp_path / "img.png"
    image.write_bytes(PNG)
    clock = FakeClock()
    correlator, events = make_correlator(tmp_path, clock=clock)

    async def run():
        await correlator.handle_created(image)
        clock.now = 0.2
        duplicate = await correlator.handle_modified(image)
        clock.now = 0.7
        reprocessed = await correlator.handle_modified(image)
        clock.now = 2.0
        too_late = await correlator.handle_modified(image)
        return duplicate, reprocessed, too_late

    duplicate, reprocessed, too_late = asyncio.run(run())

    assert duplicate is None
    assert reprocessed is not None
    assert too_late is None
    assert len(events) == 2


def test_stabilization_succeeds_on_ninth_attempt(tmp_path):
    """Test that a file becoming non-empty on the 9th poll is still correlated."""
    image = tmp_path / "slow.png"
    image.write_bytes(b"")
    sleep = FakeSleep(hooks={8: lambda: image.write_bytes(PNG)})
    correlator, events = make_correlator(tmp_path, sleep=sleep)

    event = asyncio.run(correlator.handle_created(image))

    assert event is not None
    assert len(events) == 1
    # eight poll intervals, then the post-stable delay
    assert sleep.calls == [0.05] * 8 + [0.1]


def test_never_stable_file_is_abandoned(tmp_path):
    """Test that a file that never gets content is dropped silently."""
    image = tmp_path / "empty.png"
    image.write_bytes(b"")
    sleep = FakeSleep()
    correlator, events = make_correlator(tmp_path, sleep=sleep)

    event = asyncio.run(correlator.handle_created(image))

    assert event is None
    assert events == []
    assert sleep.calls == [0.05] * 10


def test_missing_file_is_abandoned(tmp_path):
    """Test that a file deleted before stabilization is dropped silently."""
    correlator, events = make_correlator(tmp_path)

    assert asyncio.run(correlator.handle_created(tmp_path / "gone.png")) is None
    assert events == []


def test_rule_candidates_require_matching_prediction(tmp_path):
    """Test rule mode: only documents whose predicted path equals the image qualify."""
    (tmp_path / "docs" / "a").mkdir(parents=True)
    (tmp_path / "docs" / "b").mkdir(parents=True)
    (tmp_path / "docs" / "a" / "x.md").write_text("x")
    (tmp_path / "docs" / "b" / "y.md").write_text("y")
    rules = [DestinationRule("**/*.md", "images/")]
    correlator, _ = make_correlator(tmp_path, rules=rules)

    image = tmp_path / "docs" / "a" / "images" / "img.png"
    candidates = asyncio.run(correlator.find_candidates(image))

    assert candidates == [tmp_path / "docs" / "a" / "x.md"]


def test_rule_candidates_with_document_name_in_destination(tmp_path):
    """Test rule mode with per-document destination folders."""
    (tmp_path / "notes").mkdir()
    (tmp_path / "notes" / "one.md").write_text("1")
    (tmp_path / "notes" / "two.md").write_text("2")
    rules = [DestinationRule("notes/*.md", "assets/${documentBaseName}/")]
    image = tmp_path / "notes" / "assets" / "two" / "img.png"
    image.parent.mkdir(parents=True)
    image.write_bytes(PNG)
    correlator, events = make_correlator(tmp_path, rules=rules)

    event = asyncio.run(correlator.handle_created(image))

    assert event.markdown_file == tmp_path / "notes" / "two.md"
    assert event.relative_path == "notes/assets/two/img.png"


def test_rule_candidates_skip_node_modules(tmp_path):
    """Test that dependency folders are not searched for documents."""
    (tmp_path / "node_modules" / "pkg").mkdir(parents=True)
    (tmp_path / "node_modules" / "pkg" / "README.md").write_text("r")
    rules = [DestinationRule("**/*.md", "images/")]
    correlator, _ = make_correlator(tmp_path, rules=rules)

    image = tmp_path / "node_modules" / "pkg" / "images" / "img.png"
    assert asyncio.run(correlator.find_candidates(image)) == []


def test_handler_errors_do_not_escape(tmp_path):
    """Test that a failing callback is logged, not raised."""
    image = tmp_path / "img.png"
    image.write_bytes(PNG)
    config = FlowConfig(workspace_folders=[tmp_path])

    def boom(event):
        raise RuntimeError("callback failed")

    correlator = CaptureCorrelator(
        config, FsWorkspace([tmp_path]), boom, clock=FakeClock(), sleep=FakeSleep()
    )

    event = asyncio.run(correlator.handle_created(image))

    assert event is not None


def test_async_callback_is_awaited(tmp_path):
    """Test that coroutine callbacks run to completion."""
    image = tmp_path / "img.png"
    image.write_bytes(PNG)
    config = FlowConfig(workspace_folders=[tmp_path])
    seen = []

    async def on_image(event):
        await asyncio.sleep(0)
        seen.append(event.file_name)

    correlator = CaptureCorrelator(
        config, FsWorkspace([tmp_path]), on_image, clock=FakeClock(), sleep=FakeSleep()
    )
    asyncio.run(correlator.handle_created(image))

    assert seen == ["img.png"]


def test_update_config_changes_extensions(tmp_path):
    """Test that a new configuration snapshot takes effect."""
    image = tmp_path / "img.bmp"
    image.write_bytes(b"BM")
    correlator, events = make_correlator(tmp_path)
    assert asyncio.run(correlator.handle_created(image)) is None

    config = FlowConfig(workspace_folders=[tmp_path])
    config.watch.image_extensions = ("bmp",)
    correlator.update_config(config)

    assert asyncio.run(correlator.handle_created(image)) is not None


def test_modify_during_slow_stabilization_is_not_processed_twice(tmp_path):
    """Test that a modify arriving while the create is still stabilizing is dropped."""
    image = tmp_path / "slow.png"
    image.write_bytes(b"")
    clock = FakeClock()

    async def ticking_sleep(seconds):
        clock.now += seconds
        if len(sleep_calls) == 8:
            image.write_bytes(PNG)
        sleep_calls.append(seconds)
        await asyncio.sleep(0)

    sleep_calls: list[float] = []
    correlator, events = make_correlator(tmp_path, clock=clock, sleep=ticking_sleep)

    async def run():
        first = asyncio.ensure_future(correlator.handle_created(image))
        while clock.now < 0.55:
            await asyncio.sleep(0)
        assert not first.done()
        second = await correlator.handle_modified(image)
        return await first, second

    first, second = asyncio.run(run())

    assert first is not None
    assert second is None
    assert len(events) == 1
    assert correlator.in_flight == set()
