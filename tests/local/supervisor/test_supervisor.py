"""Tests for ProcessSupervisor, driven by a manual scheduler and fake processes."""

import logging
import time

import pytest

from keepalive.local.supervisor import ProcessSupervisor, WorkerStatus, process_utils, shutdown
from keepalive.local.supervisor.supervisor import describe_exit


@pytest.fixture(autouse=True)
def live_pids(monkeypatch):
    """Every fake PID exists unless a test says otherwise."""
    alive = {"value": True}
    monkeypatch.setattr(process_utils, "pid_exists", lambda pid: alive["value"])
    return alive


def make_supervisor(scheduler, spawner, config, **kwargs):
    return ProcessSupervisor(config, scheduler=scheduler, clock=scheduler.clock, spawn=spawner, **kwargs)


def crash_and_respawn(scheduler, spawner, code=1):
    """Crashes the current worker, lets the exit poll see it and the restart delay pass."""
    spawner.latest.exit(code)
    scheduler.advance(1)
    scheduler.advance(5)


@pytest.mark.unit
class TestStart:
    """Test the initial spawn and the running grace period."""

    def test_initial_start_spawns_without_counting_a_restart(self, scheduler, spawner, supervisor_config):
        """Test the first spawn is not a restart."""
        sup = make_supervisor(scheduler, spawner, supervisor_config)
        sup.start()

        assert len(spawner.processes) == 1
        assert sup.status is WorkerStatus.STARTING
        assert sup.budget.count == 0
        assert sup.handle.pid == spawner.latest.pid

    def test_marked_running_after_grace_period(self, scheduler, spawner, supervisor_config):
        """Test status becomes running once the worker survives the grace period."""
        sup = make_supervisor(scheduler, spawner, supervisor_config)
        sup.start()

        scheduler.advance(29)
        assert sup.status is WorkerStatus.STARTING
        scheduler.advance(1)
        assert sup.status is WorkerStatus.RUNNING

    def test_crash_before_grace_period_never_reports_running(self, scheduler, spawner, supervisor_config):
        """Test a worker that dies early is not reported as running."""
        sup = make_supervisor(scheduler, spawner, supervisor_config)
        sup.start()
        spawner.latest.exit(1)
        scheduler.advance(1)

        assert sup.status is WorkerStatus.RESTARTING
        assert scheduler.pending("WorkerRunningGrace") == []

    def test_pid_file_written_on_spawn(self, scheduler, spawner, supervisor_config, tmp_path):
        """Test the PID file records the worker."""
        pid_file = tmp_path / "run" / "keepalive.pid"
        sup = make_supervisor(scheduler, spawner, supervisor_config, pid_file=pid_file)
        sup.start()

        assert pid_file.exists()
        assert f'"worker": {spawner.latest.pid}' in pid_file.read_text()

    def test_missing_settings_fall_back_to_defaults(self, scheduler, spawner):
        """Test an empty config uses the packaged defaults."""
        sup = make_supervisor(scheduler, spawner, {})
        assert sup.budget.max_restarts == 50
        assert sup.budget.window == 300


@pytest.mark.unit
class TestRestart:
    """Test restarts after exits and the restart budget."""

    def test_abnormal_exit_restarts_after_fixed_delay(self, scheduler, spawner, supervisor_config):
        """Test a crash schedules exactly one respawn after the restart delay."""
        sup = make_supervisor(scheduler, spawner, supervisor_config)
        sup.start()
        spawner.latest.exit(1)
        scheduler.advance(1)

        assert sup.status is WorkerStatus.RESTARTING
        assert sup.handle is None
        scheduler.advance(4.5)
        assert len(spawner.processes) == 1
        scheduler.advance(0.5)
        assert len(spawner.processes) == 2
        assert sup.budget.count == 1

    def test_clean_exit_is_restarted_too(self, scheduler, spawner, supervisor_config):
        """Test exit code 0 still leads to a restart."""
        sup = make_supervisor(scheduler, spawner, supervisor_config)
        sup.start()
        crash_and_respawn(scheduler, spawner, code=0)
        assert len(spawner.processes) == 2

    def test_delay_does_not_grow(self, scheduler, spawner, supervisor_config):
        """Test every restart waits the same delay."""
        sup = make_supervisor(scheduler, spawner, supervisor_config)
        sup.start()
        for expected in range(2, 6):
            crash_and_respawn(scheduler, spawner)
            assert len(spawner.processes) == expected

    @pytest.mark.parametrize("exits", [1, 2, 3, 4])
    def test_restart_count_never_exceeds_max(self, scheduler, spawner, supervisor_config, exits):
        """Test the count after N exits within one window is min(N, max)."""
        config = dict(supervisor_config, MAX_RESTARTS=3)
        sup = make_supervisor(scheduler, spawner, config)
        sup.start()
        for _ in range(exits):
            crash_and_respawn(scheduler, spawner)

        assert sup.budget.count == min(exits, 3)

    def test_budget_exhaustion_opens_circuit_breaker(self, scheduler, spawner, supervisor_config, caplog):
        """Test max=2: two restarts, then failed and a retry one window later."""
        config = dict(supervisor_config, MAX_RESTARTS=2)
        sup = make_supervisor(scheduler, spawner, config)
        sup.start()

        crash_and_respawn(scheduler, spawner)
        assert sup.budget.count == 1
        crash_and_respawn(scheduler, spawner)
        assert sup.budget.count == 2

        with caplog.at_level(logging.CRITICAL):
            crash_and_respawn(scheduler, spawner)
        assert sup.status is WorkerStatus.FAILED
        assert len(spawner.processes) == 3
        assert "Maximum restart limit (2) reached" in caplog.text
        assert len(scheduler.pending("SupervisorCooldown")) == 1

        scheduler.advance(299)
        assert len(spawner.processes) == 3
        scheduler.advance(1)
        assert len(spawner.processes) == 4
        assert sup.status is WorkerStatus.STARTING
        assert sup.budget.count == 1

    def test_window_elapsed_resets_count(self, scheduler, spawner, supervisor_config):
        """Test the count restarts from zero once the window has passed."""
        sup = make_supervisor(scheduler, spawner, supervisor_config)
        sup.start()
        crash_and_respawn(scheduler, spawner)
        crash_and_respawn(scheduler, spawner)
        assert sup.budget.count == 2

        scheduler.advance(301)
        crash_and_respawn(scheduler, spawner)
        assert sup.budget.count == 1

    def test_spawn_failure_is_treated_as_crash(self, scheduler, spawner, supervisor_config, caplog):
        """Test an OSError from spawn schedules a restart instead of propagating."""
        spawner.fail_next(OSError("no such executable"))
        sup = make_supervisor(scheduler, spawner, supervisor_config)

        with caplog.at_level(logging.ERROR):
            sup.start()
        assert "Failed to start worker process" in caplog.text
        assert sup.status is WorkerStatus.RESTARTING
        assert spawner.processes == []

        scheduler.advance(5)
        assert len(spawner.processes) == 1

    def test_exit_of_stale_handle_is_ignored(self, scheduler, spawner, supervisor_config):
        """Test an exit event for a replaced worker does not trigger another restart."""
        sup = make_supervisor(scheduler, spawner, supervisor_config)
        sup.start()
        old_handle = sup.handle
        crash_and_respawn(scheduler, spawner)

        sup.handle_restart(old_handle)
        assert sup.handle is not None
        assert scheduler.pending("SupervisorRestart") == []


@pytest.mark.unit
class TestHealthPolling:
    """Test the pid-existence health poll."""

    def test_missing_pid_triggers_restart(self, scheduler, spawner, supervisor_config, live_pids):
        """Test a vanished worker PID is handled like a crash."""
        sup = make_supervisor(scheduler, spawner, supervisor_config)
        sup.start()
        live_pids["value"] = False

        scheduler.advance(30)
        assert sup.status is WorkerStatus.RESTARTING
        scheduler.advance(5)
        assert len(spawner.processes) == 2
        assert sup.budget.count == 1

    def test_existing_pid_passes(self, scheduler, spawner, supervisor_config):
        """Test a live worker survives several health polls."""
        sup = make_supervisor(scheduler, spawner, supervisor_config)
        sup.start()
        scheduler.advance(120)

        assert len(spawner.processes) == 1
        assert sup.status is WorkerStatus.RUNNING


@pytest.mark.unit
class TestRestartRequiredExit:
    """Test the exit code the worker uses to ask for a restart."""

    def test_restart_required_code_restarts(self, scheduler, spawner, supervisor_config, caplog):
        """Test exit code 75 is recognised and restarted."""
        sup = make_supervisor(scheduler, spawner, supervisor_config)
        sup.start()
        with caplog.at_level(logging.WARNING):
            crash_and_respawn(scheduler, spawner, code=75)

        assert "restart-required code 75" in caplog.text
        assert len(spawner.processes) == 2

    def test_restart_required_handed_to_platform(self, scheduler, spawner, supervisor_config):
        """Test EXIT_ON_RESTART_REQUIRED makes the supervisor itself exit with 75."""
        config = dict(supervisor_config, EXIT_ON_RESTART_REQUIRED=True)
        sup = make_supervisor(scheduler, spawner, config)
        sup.start()
        spawner.latest.exit(75)
        scheduler.advance(1)

        assert sup.shutting_down
        assert sup.exit_code == 75
        assert sup.wait_terminated(0)
        scheduler.advance(60)
        assert len(spawner.processes) == 1


@pytest.mark.unit
class TestShutdown:
    """Test graceful and forced shutdown."""

    def test_shutdown_sends_single_terminate(self, scheduler, spawner, supervisor_config, monkeypatch):
        """Test calling shutdown twice signals the worker once."""
        calls = []
        monkeypatch.setattr(shutdown, "send_terminate", lambda handle: calls.append(handle.pid) or True)
        sup = make_supervisor(scheduler, spawner, supervisor_config)
        sup.start()

        sup.shutdown()
        sup.shutdown()
        assert calls == [spawner.latest.pid]

    def test_worker_exit_completes_shutdown(self, scheduler, spawner, supervisor_config, tmp_path):
        """Test the exit after SIGTERM finishes shutdown and removes the PID file."""
        pid_file = tmp_path / "keepalive.pid"
        sup = make_supervisor(scheduler, spawner, supervisor_config, pid_file=pid_file)
        sup.start()
        sup.shutdown()
        assert spawner.latest.terminate_calls == 1
        assert not sup.wait_terminated(0)

        spawner.latest.exit(-15)
        scheduler.advance(1)
        assert sup.wait_terminated(0)
        assert sup.status is WorkerStatus.STOPPED
        assert not pid_file.exists()
        assert spawner.latest.kill_calls == 0

    def test_kill_after_grace_period(self, scheduler, spawner, supervisor_config):
        """Test a worker ignoring SIGTERM is killed after the grace period."""
        sup = make_supervisor(scheduler, spawner, supervisor_config)
        sup.start()
        sup.shutdown()

        scheduler.advance(9)
        assert spawner.latest.kill_calls == 0
        scheduler.advance(1)
        assert spawner.latest.kill_calls == 1
        scheduler.advance(1)
        assert sup.wait_terminated(0)

    def test_no_spawn_after_shutdown(self, scheduler, spawner, supervisor_config):
        """Test exits after shutdown never lead to a respawn."""
        sup = make_supervisor(scheduler, spawner, supervisor_config)
        sup.start()
        sup.shutdown()
        spawner.latest.exit(1)
        scheduler.advance(60)

        assert len(spawner.processes) == 1
        sup.start()
        assert len(spawner.processes) == 1

    def test_shutdown_during_restart_delay(self, scheduler, spawner, supervisor_config):
        """Test a pending restart timer performs no spawn once shutdown began."""
        sup = make_supervisor(scheduler, spawner, supervisor_config)
        sup.start()
        spawner.latest.exit(1)
        scheduler.advance(1)
        assert sup.status is WorkerStatus.RESTARTING

        sup.shutdown()
        scheduler.advance(10)
        assert len(spawner.processes) == 1
        assert sup.status is WorkerStatus.STOPPED
        assert sup.wait_terminated(0)

    def test_shutdown_while_spawning_terminates_new_worker(self, scheduler, spawner, supervisor_config, tmp_path):
        """Test a shutdown arriving on the spawning thread stops the worker once Popen returns."""
        pid_file = tmp_path / "keepalive.pid"
        holder = {}

        def spawn_interrupted_by_signal():
            holder["sup"].shutdown()
            return spawner()

        sup = make_supervisor(scheduler, spawn_interrupted_by_signal, supervisor_config, pid_file=pid_file)
        holder["sup"] = sup
        sup.start()

        assert sup.shutting_down
        assert spawner.latest.terminate_calls == 1
        assert not sup.wait_terminated(0)
        assert not pid_file.exists()
        assert scheduler.pending("WorkerHealthPoll") == []
        assert scheduler.pending("WorkerRunningGrace") == []

        spawner.latest.exit(-15)
        scheduler.advance(1)
        assert sup.wait_terminated(0)
        assert sup.handle is None
        assert sup.status is WorkerStatus.STOPPED
        scheduler.advance(60)
        assert len(spawner.processes) == 1

    def test_shutdown_while_spawning_is_killed_after_grace(self, scheduler, spawner, supervisor_config):
        """Test the worker spawned during shutdown still gets the forced kill."""
        holder = {}

        def spawn_interrupted_by_signal():
            holder["sup"].shutdown()
            return spawner()

        sup = make_supervisor(scheduler, spawn_interrupted_by_signal, supervisor_config)
        holder["sup"] = sup
        sup.start()

        scheduler.advance(10)
        assert spawner.latest.kill_calls == 1
        scheduler.advance(1)
        assert sup.wait_terminated(0)

    def test_failed_spawn_during_shutdown_finishes_shutdown(self, scheduler, spawner, supervisor_config):
        """Test a spawn error after shutdown began completes shutdown without a restart."""
        holder = {}

        def spawn_interrupted_then_failing():
            holder["sup"].shutdown()
            raise OSError("no such file")

        sup = make_supervisor(scheduler, spawn_interrupted_then_failing, supervisor_config)
        holder["sup"] = sup
        sup.start()

        assert sup.wait_terminated(0)
        assert sup.status is WorkerStatus.STOPPED
        assert scheduler.pending() == []

    def test_shutdown_before_start(self, scheduler, spawner, supervisor_config):
        """Test shutdown with no worker completes immediately."""
        sup = make_supervisor(scheduler, spawner, supervisor_config)
        sup.shutdown()
        assert sup.wait_terminated(0)
        sup.start()
        assert spawner.processes == []


@pytest.mark.unit
class TestStatus:
    """Test the read-only status snapshot."""

    def test_snapshot_fields(self, scheduler, spawner, supervisor_config):
        """Test the snapshot reports the worker and budget."""
        sup = make_supervisor(scheduler, spawner, supervisor_config)
        sup.start()
        crash_and_respawn(scheduler, spawner)

        status = sup.get_status()
        assert status == {
            "running": True,
            "pid": spawner.latest.pid,
            "restart_count": 1,
            "last_restart_time": scheduler.clock.now,
            "max_restarts": 50,
            "status": "starting",
            "shutting_down": False,
        }

    def test_snapshot_does_not_reap(self, scheduler, spawner, supervisor_config):
        """Test reading the status leaves an exited worker unreaped."""
        sup = make_supervisor(scheduler, spawner, supervisor_config)
        sup.start()
        spawner.latest.exit(1)

        first = sup.get_status()
        second = sup.get_status()
        assert first == second
        assert spawner.latest.returncode is None
        assert sup.status is WorkerStatus.STARTING


@pytest.mark.unit
class TestDescribeExit:
    """Test exit code descriptions."""

    def test_plain_code(self):
        assert describe_exit(3) == "code 3"

    def test_signal(self):
        assert describe_exit(-15) == "signal SIGTERM"


@pytest.mark.integration
class TestRealWorker:
    """Test the supervisor with real child processes and real timers."""

    def test_restart_required_exit_reaches_supervisor(self, supervisor_config, tmp_path):
        """Test a worker exiting with the restart code ends a platform-handled supervisor with that code."""
        import shlex
        import sys

        config = dict(
            supervisor_config,
            EXIT_POLL_INTERVAL=0.05,
            EXIT_ON_RESTART_REQUIRED=True,
            WORKER_COMMAND=shlex.join([sys.executable, "-c", "import sys; sys.exit(75)"]),
            BASE_DIR=tmp_path,
        )
        sup = ProcessSupervisor(config)
        sup.start()

        assert sup.wait_terminated(10)
        assert sup.exit_code == 75
        assert sup.get_status()["shutting_down"] is True

    def test_crashing_worker_is_respawned(self, supervisor_config, tmp_path):
        """Test a real crash is followed by a real respawn."""
        import shlex
        import sys

        config = dict(
            supervisor_config,
            EXIT_POLL_INTERVAL=0.05,
            RESTART_DELAY_SECONDS=0.1,
            WORKER_COMMAND=shlex.join([sys.executable, "-c", "import sys; sys.exit(1)"]),
            BASE_DIR=tmp_path,
        )
        sup = ProcessSupervisor(config)
        try:
            sup.start()
            deadline = time.time() + 10
            while sup.budget.count < 2 and time.time() < deadline:
                time.sleep(0.05)
            assert sup.budget.count >= 2
        finally:
            sup.shutdown()
            sup.wait_terminated(15)
