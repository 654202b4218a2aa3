"""Tests for the directory watcher: filtering, batch splitting, sources."""

import os
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from watchdog.events import DirCreatedEvent, FileCreatedEvent, FileMovedEvent

from chibi_sync.watcher import (
    DirectoryWatcher,
    FswatchEventSource,
    UploadCandidate,
    WatchdogEventSource,
    WatcherError,
    _CreatedFileHandler,
    create_event_source,
    is_metadata_artifact,
    split_batch,
)


@pytest.fixture
def emitted():
    return []


@pytest.fixture
def watcher(tmp_path: Path, emitted):
    return DirectoryWatcher(str(tmp_path), emitted.append, source=MagicMock())


class TestSplitBatch:
    """Raw notification batches."""

    def test_nul_and_newline_separated(self):
        assert split_batch("/a/one\0/a/two\n/a/three") == ["/a/one", "/a/two", "/a/three"]

    def test_trims_spaces_and_drops_empty(self):
        assert split_batch("  /a/one \0\0 \t\0/a/two\n\n") == ["/a/one", "/a/two"]

    def test_empty_batch(self):
        assert split_batch("") == []


class TestFiltering:
    """Which paths become upload candidates."""

    def test_regular_file_emits_one_candidate(self, tmp_path, watcher, emitted):
        f = tmp_path / "shot.png"
        f.write_bytes(b"png")

        assert watcher.handle_batch(str(f)) == 1
        assert emitted == [UploadCandidate(str(f))]

    def test_directory_emits_nothing(self, tmp_path, watcher, emitted):
        d = tmp_path / "folder"
        d.mkdir()

        assert watcher.handle_batch(str(d)) == 0
        assert emitted == []

    @pytest.mark.parametrize("name", [".DS_Store", "Thumbs.db", "._shot.png"])
    def test_metadata_artifacts_emit_nothing(self, tmp_path, watcher, emitted, name):
        f = tmp_path / name
        f.write_bytes(b"meta")

        assert watcher.handle_batch(str(f)) == 0
        assert emitted == []

    def test_vanished_file_is_silently_skipped(self, tmp_path, watcher, emitted):
        assert watcher.handle_batch(str(tmp_path / "gone.png")) == 0
        assert emitted == []

    def test_relative_path_resolved_to_absolute(self, tmp_path, watcher, emitted, monkeypatch):
        (tmp_path / "rel.txt").write_text("x")
        monkeypatch.chdir(tmp_path)

        watcher.handle_batch("rel.txt")
        assert emitted == [UploadCandidate(os.path.join(os.getcwd(), "rel.txt"))]

    def test_burst_emits_each_file(self, tmp_path, watcher, emitted):
        files = [tmp_path / f"f{i}.jpg" for i in range(3)]
        for f in files:
            f.write_bytes(b"x")
        (tmp_path / "sub").mkdir()

        raw = "\0".join([str(files[0]), str(tmp_path / "sub"), str(files[1]), str(files[2])])
        assert watcher.handle_batch(raw + "\0") == 3
        assert [c.path for c in emitted] == [str(f) for f in files]

    def test_repeated_events_are_not_merged(self, tmp_path, watcher, emitted):
        f = tmp_path / "again.png"
        f.write_bytes(b"x")

        watcher.handle_batch(str(f))
        watcher.handle_batch(str(f))
        assert len(emitted) == 2

    def test_callback_error_does_not_stop_batch(self, tmp_path):
        calls = []

        def _boom(candidate):
            calls.append(candidate)
            raise RuntimeError("sink exploded")

        w = DirectoryWatcher(str(tmp_path), _boom, source=MagicMock())
        a, b = tmp_path / "a.txt", tmp_path / "b.txt"
        a.write_text("a")
        b.write_text("b")

        assert w.handle_batch(f"{a}\n{b}") == 2
        assert len(calls) == 2

    def test_metadata_helper(self):
        assert is_metadata_artifact("/x/.DS_Store")
        assert not is_metadata_artifact("/x/photo.DS_Store.png")


class TestLifecycle:
    """start/stop behaviour."""

    def test_missing_directory_raises_and_source_untouched(self, tmp_path):
        source = MagicMock()
        w = DirectoryWatcher(str(tmp_path / "nope"), lambda c: None, source=source)

        with pytest.raises(WatcherError):
            w.start()
        source.start.assert_not_called()

    def test_start_wires_source_to_batch_handler(self, tmp_path):
        source = MagicMock()
        w = DirectoryWatcher(str(tmp_path), lambda c: None, source=source)

        w.start()
        source.start.assert_called_once_with(str(tmp_path), w.handle_batch)

        w.stop()
        source.stop.assert_called_once()

    def test_source_failure_propagates_as_watcher_error(self, tmp_path):
        source = MagicMock()
        source.start.side_effect = WatcherError("permission denied")
        w = DirectoryWatcher(str(tmp_path), lambda c: None, source=source)

        with pytest.raises(WatcherError, match="permission denied"):
            w.start()


class TestWatchdogHandler:
    """Translation of watchdog events into raw batches."""

    def test_created_file_forwarded(self):
        on_batch = MagicMock()
        _CreatedFileHandler(on_batch).on_created(FileCreatedEvent("/w/new.png"))
        on_batch.assert_called_once_with("/w/new.png")

    def test_created_directory_ignored(self):
        on_batch = MagicMock()
        _CreatedFileHandler(on_batch).on_created(DirCreatedEvent("/w/dir"))
        on_batch.assert_not_called()

    def test_move_forwards_destination(self):
        on_batch = MagicMock()
        _CreatedFileHandler(on_batch).on_moved(FileMovedEvent("/w/.tmp123", "/w/final.png"))
        on_batch.assert_called_once_with("/w/final.png")


class TestFswatchSource:
    """The fswatch subprocess transport."""

    def test_missing_binary_raises(self):
        source = FswatchEventSource(executable="no-such-fswatch-binary-xyz")
        with pytest.raises(WatcherError, match="not found"):
            source.start("/tmp", lambda raw: None)

    def test_read_loop_reassembles_split_paths(self):
        process = MagicMock()
        process.stdout.read1.side_effect = [b"/a/one\0/a/tw", b"o\0", b""]
        process.poll.side_effect = [None, None, None, 0]
        batches = []

        FswatchEventSource()._read_loop(process, batches.append)

        assert batches == ["/a/one", "/a/two"]

    @pytest.mark.skipif(
        sys.platform in ("darwin", "win32"),
        reason="filesystem requires valid UTF-8 / UTF-16 names",
    )
    def test_non_utf8_filename_reaches_watcher(self, tmp_path: Path):
        raw = os.path.join(os.fsencode(str(tmp_path)), b"caf\xe9.png")
        with open(raw, "wb") as fh:
            fh.write(b"img")
        process = MagicMock()
        process.stdout.read1.side_effect = [raw + b"\0", b""]
        process.poll.side_effect = [None, None, 0]
        emitted = []
        watcher = DirectoryWatcher(str(tmp_path), emitted.append, source=MagicMock())

        FswatchEventSource()._read_loop(process, watcher.handle_batch)

        assert emitted == [UploadCandidate(os.fsdecode(raw))]
        assert os.path.exists(emitted[0].path)

    def test_closed_pipe_ends_read_loop(self):
        process = MagicMock()
        process.stdout.read1.side_effect = ValueError("read of closed file")
        process.poll.return_value = None
        batches = []

        FswatchEventSource()._read_loop(process, batches.append)

        assert batches == []

    def test_stop_terminates_joins_reader_and_closes_pipe(self):
        order = []
        process = MagicMock()
        process.poll.return_value = None
        process.terminate.side_effect = lambda: order.append("terminate")
        process.stdout.close.side_effect = lambda: order.append("close")
        thread = MagicMock()
        thread.join.side_effect = lambda timeout=None: order.append("join")
        source = FswatchEventSource()
        source._process = process
        source._thread = thread

        source.stop()

        process.wait.assert_called_once_with(timeout=5)
        thread.join.assert_called_once_with(timeout=5)
        assert order == ["terminate", "join", "close"]
        assert source._process is None
        assert source._thread is None
        assert not source.is_running

    def test_stop_after_exit_still_closes_pipe(self):
        process = MagicMock()
        process.poll.return_value = 0
        source = FswatchEventSource()
        source._process = process

        source.stop()

        process.terminate.assert_not_called()
        process.stdout.close.assert_called_once_with()

    def test_stop_before_start_is_harmless(self):
        FswatchEventSource().stop()


class TestBackendSelection:
    """Choosing the event source by name."""

    def test_default_is_watchdog(self):
        assert isinstance(create_event_source(), WatchdogEventSource)

    def test_fswatch_backend(self):
        assert isinstance(create_event_source("fswatch"), FswatchEventSource)

    def test_unknown_backend_falls_back_to_watchdog(self, caplog):
        with caplog.at_level("WARNING", logger="chibi_sync.watcher"):
            source = create_event_source("inotifywait")

        assert isinstance(source, WatchdogEventSource)
        assert "Unknown watch backend" in caplog.text
