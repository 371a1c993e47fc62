"""Tests for WatchController - the watch/classify/debounce/rebuild loop."""

import logging
import os
import threading

import pytest

from forgewatch.controller import WatchController
from forgewatch.debounce import DebounceGate
from forgewatch.filters import parse_extensions
from forgewatch.models import ChangeEvent, ChangeKind, WatchConfig
from forgewatch.registry import WatchRegistry
from forgewatch.supervisor import NESTED_ENV_VAR, BuildSupervisor, SupervisorState
from forgewatch.watchers import BackendError


def modified(directory, name):
    return ChangeEvent(affected_path=str(directory), name=name, is_directory=False, kind=ChangeKind.MODIFIED)


def created(directory, name, is_directory=False):
    return ChangeEvent(affected_path=str(directory), name=name, is_directory=is_directory, kind=ChangeKind.CREATED)


@pytest.fixture
def make_controller(backend, processes, clock):
    """Build a controller wired to the fakes."""

    def factory(roots, command="echo built", extensions="", max_watches=1024):
        config = WatchConfig(
            roots=tuple(str(r) for r in roots),
            build_command=command,
            extensions=parse_extensions(extensions),
        )
        return WatchController(
            config,
            backend,
            registry=WatchRegistry(backend, max_watches=max_watches),
            supervisor=BuildSupervisor(processes),
            gate=DebounceGate(),
            clock=clock,
        )

    return factory


class TestStart:
    """Tests for WatchController.start."""

    def test_enrolls_roots_and_runs_initial_build(self, make_controller, backend, processes, src_tree):
        """All directories are watched, the marker is set and the build runs once."""
        controller = make_controller([src_tree])
        controller.start()

        assert backend.started
        assert set(controller.registry.paths) == {str(src_tree), str(src_tree / "lib")}
        assert os.environ[NESTED_ENV_VAR] == "1"
        assert processes.commands == ["echo built"]

    def test_initial_build_can_be_skipped(self, make_controller, processes, src_tree):
        """start(initial_build=False) only enrolls."""
        controller = make_controller([src_tree])
        controller.start(initial_build=False)
        assert processes.children == []

    def test_initial_build_opens_debounce_window(self, make_controller, processes, src_tree):
        """A change right after startup is coalesced with the initial build."""
        controller = make_controller([src_tree])
        controller.start()
        assert controller.handle_event(modified(src_tree, "main.c")) is False
        assert len(processes.children) == 1

    def test_backend_failure_propagates(self, make_controller, backend, src_tree):
        """Backend initialisation errors are fatal."""
        backend.fail_start = True
        controller = make_controller([src_tree])
        with pytest.raises(BackendError):
            controller.start()

    def test_unwatchable_root_is_a_warning(self, make_controller, backend, src_tree, caplog):
        """A root the backend refuses does not abort startup."""
        backend.refuse = {str(src_tree)}
        controller = make_controller([src_tree])

        with caplog.at_level(logging.WARNING, logger="forgewatch"):
            controller.start(initial_build=False)

        assert len(controller.registry) == 0
        assert "could not be watched" in caplog.text


class TestHandleEvent:
    """Tests for event classification."""

    def test_single_save_runs_build_once(self, make_controller, processes, src_tree):
        """One save of main.c runs 'echo built' once."""
        controller = make_controller([src_tree])
        controller.start(initial_build=False)

        assert controller.handle_event(modified(src_tree, "main.c")) is True
        assert processes.commands == ["echo built"]

    def test_burst_within_window_restarts_once(self, make_controller, processes, clock, src_tree):
        """Three saves within 200 ms restart exactly once."""
        controller = make_controller([src_tree])
        controller.start(initial_build=False)

        for _ in range(3):
            controller.handle_event(modified(src_tree, "main.c"))
            clock.advance(0.1)

        assert len(processes.children) == 1

    def test_saves_in_separate_windows_restart_each_time(self, make_controller, processes, clock, src_tree):
        """Saves further apart than the window each restart the build."""
        controller = make_controller([src_tree])
        controller.start(initial_build=False)

        controller.handle_event(modified(src_tree, "main.c"))
        clock.advance(1.5)
        controller.handle_event(modified(src_tree, "main.c"))

        assert len(processes.children) == 2
        assert processes.max_live == 1

    @pytest.mark.parametrize("name", [".main.c.swp", ".git", "main.c~", ".#main.c", "build.tmp"])
    def test_noise_never_triggers(self, make_controller, processes, src_tree, name):
        """Swap files, dotfiles and backups restart nothing."""
        controller = make_controller([src_tree])
        controller.start(initial_build=False)
        assert controller.handle_event(modified(src_tree, name)) is False
        assert processes.children == []

    def test_noise_ignored_even_with_matching_extension(self, make_controller, processes, src_tree):
        """The noise filter runs before the allow-list."""
        controller = make_controller([src_tree], extensions=".swp .c")
        controller.start(initial_build=False)
        assert controller.handle_event(modified(src_tree, "main.c.swp")) is False
        assert controller.handle_event(modified(src_tree, ".main.c")) is False
        assert processes.children == []

    def test_allow_list(self, make_controller, processes, clock, src_tree):
        """With {.c, .h}, main.c restarts and main.cpp does not."""
        controller = make_controller([src_tree], extensions=".c .h")
        controller.start(initial_build=False)

        assert controller.handle_event(modified(src_tree, "main.cpp")) is False
        assert controller.handle_event(modified(src_tree, "main.c")) is True
        assert len(processes.children) == 1

    def test_new_directory_is_enrolled_then_file_triggers(self, make_controller, backend, processes, src_tree):
        """Mkdir sub/ then create sub/new.c restarts once, on the file."""
        controller = make_controller([src_tree], extensions=".c")
        controller.start(initial_build=False)
        sub = src_tree / "sub"
        sub.mkdir()

        assert controller.handle_event(created(src_tree, "sub", is_directory=True)) is False
        assert str(sub) in controller.registry
        assert processes.children == []

        (sub / "new.c").write_text("")
        assert controller.handle_event(created(sub, "new.c")) is True
        assert len(processes.children) == 1

    def test_new_directory_subtree_is_enrolled(self, make_controller, src_tree):
        """Directories that already exist inside a new directory are watched too."""
        controller = make_controller([src_tree])
        controller.start(initial_build=False)
        (src_tree / "pkg" / "deep" / "er").mkdir(parents=True)

        controller.handle_event(created(src_tree, "pkg", is_directory=True))

        assert str(src_tree / "pkg" / "deep" / "er") in controller.registry

    def test_new_directory_enrolled_even_when_gate_closed(self, make_controller, src_tree):
        """Enrollment does not depend on the debounce gate."""
        controller = make_controller([src_tree])
        controller.start()
        (src_tree / "later").mkdir()

        controller.handle_event(created(src_tree, "later", is_directory=True))

        assert str(src_tree / "later") in controller.registry

    def test_watch_limit_exhausted(self, make_controller, processes, src_tree, caplog):
        """Over-limit directories are skipped, enrolled ones still work."""
        for name in ("x", "y", "z"):
            (src_tree / name).mkdir()
        controller = make_controller([src_tree], max_watches=2)

        with caplog.at_level(logging.WARNING, logger="forgewatch"):
            controller.start(initial_build=False)

        assert len(controller.registry) == 2
        assert "Too many watches" in caplog.text
        assert controller.handle_event(modified(src_tree, "main.c")) is True
        assert len(processes.children) == 1

    def test_self_events_skipped(self, make_controller, processes, src_tree):
        """Events without a name concern the watched directory itself."""
        controller = make_controller([src_tree])
        controller.start(initial_build=False)
        event = ChangeEvent(affected_path=str(src_tree), name="", is_directory=True, kind=ChangeKind.MODIFIED)
        assert controller.handle_event(event) is False
        assert processes.children == []

    @pytest.mark.parametrize("kind", [ChangeKind.MODIFIED, ChangeKind.DELETED])
    def test_directory_events_other_than_creation_ignored(self, make_controller, processes, src_tree, kind):
        """A modified or deleted directory neither builds nor enrolls."""
        controller = make_controller([src_tree])
        controller.start(initial_build=False)
        event = ChangeEvent(affected_path=str(src_tree), name="lib", is_directory=True, kind=kind)

        assert controller.handle_event(event) is False
        assert processes.children == []

    def test_deleted_file_triggers(self, make_controller, processes, src_tree):
        """Removing a source file is a qualifying change."""
        controller = make_controller([src_tree])
        controller.start(initial_build=False)
        event = ChangeEvent(affected_path=str(src_tree), name="old.c", is_directory=False, kind=ChangeKind.DELETED)
        assert controller.handle_event(event) is True

    def test_other_kinds_ignored(self, make_controller, processes, src_tree):
        """Open/close style notifications are not subscribed kinds."""
        controller = make_controller([src_tree])
        controller.start(initial_build=False)
        event = ChangeEvent(affected_path=str(src_tree), name="main.c", is_directory=False, kind=ChangeKind.OTHER)
        assert controller.handle_event(event) is False


class TestRunAndShutdown:
    """Tests for the loop and teardown."""

    def test_run_processes_batches_until_shutdown(self, make_controller, backend, processes, clock, src_tree):
        """Batches are handled in order, then a requested shutdown exits 0."""
        controller = make_controller([src_tree])
        controller.start(initial_build=False)
        backend.batches = [
            [modified(src_tree, "main.c"), modified(src_tree, "main.c")],
            [],
            [modified(src_tree / "lib", "util.c")],
        ]
        backend.on_empty = controller.request_shutdown

        assert controller.run() == 0

        assert len(processes.children) == 1
        assert backend.closed
        assert backend.wakes == 1
        assert controller.supervisor.state is SupervisorState.CLOSED
        assert processes.live() == []

    def test_shutdown_order(self, make_controller, backend, src_tree, monkeypatch):
        """Child first, then watches, then the backend."""
        controller = make_controller([src_tree])
        controller.start()
        calls = []
        monkeypatch.setattr(controller.supervisor, "shutdown", lambda: calls.append("supervisor"))
        monkeypatch.setattr(controller.registry, "release_all", lambda: calls.append("registry"))
        monkeypatch.setattr(backend, "close", lambda: calls.append("backend"))

        controller.request_shutdown()
        controller.run()

        assert calls == ["supervisor", "registry", "backend"]

    def test_channel_failure_exits_loop(self, make_controller, backend, processes, src_tree, caplog):
        """A broken channel stops the loop, still shuts down, and returns 1."""
        controller = make_controller([src_tree])
        controller.start()
        backend.batches = [BackendError("read failed")]

        with caplog.at_level(logging.ERROR, logger="forgewatch"):
            assert controller.run() == 1

        assert "read failed" in caplog.text
        assert backend.closed
        assert processes.live() == []
        assert backend.unsubscribed

    def test_shutdown_twice(self, make_controller, backend, processes, src_tree):
        """A second shutdown neither errors nor terminates again."""
        controller = make_controller([src_tree])
        controller.start()

        controller.shutdown()
        controller.shutdown()

        assert len(processes.terminations) == 1
        assert len(backend.unsubscribed) == 2

    def test_events_after_shutdown_request_are_dropped(self, make_controller, backend, processes, src_tree):
        """The rest of a batch is not processed once shutdown is requested."""
        controller = make_controller([src_tree])
        controller.start(initial_build=False)

        def stop_then_batch():
            controller.request_shutdown()
            return [modified(src_tree, "main.c")]

        backend.batches = [stop_then_batch]
        controller.run()

        assert processes.children == []

    def test_request_shutdown_from_another_thread(self, make_controller, backend, src_tree):
        """request_shutdown only flips a flag and wakes the backend."""
        controller = make_controller([src_tree])
        controller.start(initial_build=False)

        thread = threading.Thread(target=controller.request_shutdown)
        thread.start()
        thread.join()

        assert backend.wakes == 1
        assert controller.run() == 0
