"""Tests for worker command construction, spawning and external process shutdown."""

import os
import shlex
import subprocess
import sys

import psutil
import pytest

from keepalive.local.supervisor import process_utils, shutdown


@pytest.mark.unit
class TestWorkerArgs:
    """Test get_worker_args and build_worker_env."""

    def test_default_command_runs_bundled_worker(self, tmp_path):
        """Test an empty command runs the worker entry module."""
        args, cwd = process_utils.get_worker_args({"PYTHON_EXECUTABLE": "/usr/bin/python3", "BASE_DIR": tmp_path})
        assert args == ["/usr/bin/python3", "-m", "keepalive.local.entry.worker"]
        assert cwd == tmp_path

    def test_custom_command_is_shell_split(self, tmp_path):
        """Test a configured command keeps quoted arguments together."""
        args, _ = process_utils.get_worker_args({"WORKER_COMMAND": "myworker --name 'a b'", "BASE_DIR": tmp_path})
        assert args == ["myworker", "--name", "a b"]

    def test_malformed_command_raises(self, tmp_path):
        """Test an unbalanced quote surfaces as ValueError."""
        with pytest.raises(ValueError):
            process_utils.get_worker_args({"WORKER_COMMAND": "worker 'oops", "BASE_DIR": tmp_path})

    def test_env_marks_production_mode(self):
        """Test the worker environment carries the mode marker."""
        env = process_utils.build_worker_env({"WORKER_MODE_ENV_VAR": "KEEPALIVE_ENV", "WORKER_MODE": "production"})
        assert env["KEEPALIVE_ENV"] == "production"
        assert env["PATH"] == os.environ.get("PATH")


@pytest.mark.integration
class TestSpawnWorker:
    """Test spawning and stopping real processes."""

    def test_spawned_worker_sees_mode_marker(self, tmp_path):
        """Test the child inherits the environment plus the mode marker."""
        code = "import os, sys; sys.exit(0 if os.environ.get('KEEPALIVE_ENV') == 'production' else 3)"
        config = {"WORKER_COMMAND": shlex.join([sys.executable, "-c", code]), "BASE_DIR": tmp_path}
        process = process_utils.spawn_worker(config)
        assert process.wait(timeout=10) == 0

    def test_missing_executable_raises_oserror(self, tmp_path):
        """Test a nonexistent executable fails at spawn time."""
        config = {"WORKER_COMMAND": str(tmp_path / "does-not-exist"), "BASE_DIR": tmp_path}
        with pytest.raises(OSError):
            process_utils.spawn_worker(config)

    def test_stop_external_process(self):
        """Test SIGTERM stops a running process."""
        process = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"])
        try:
            assert shutdown.stop_external_process(process.pid, timeout=5)
            assert not psutil.pid_exists(process.pid) or psutil.Process(process.pid).status() == psutil.STATUS_ZOMBIE
        finally:
            if process.poll() is None:
                process.kill()
            process.wait(timeout=5)

    def test_stop_external_process_missing_pid(self):
        """Test stopping a process that is gone reports False."""
        process = subprocess.Popen([sys.executable, "-c", "pass"])
        process.wait(timeout=10)
        assert not shutdown.stop_external_process(process.pid, timeout=1)
