"""
This module contains the default configuration settings for Keepalive.
It defines paths, supervisor and watchdog timings, logging configuration and
the worker launch command. Values can be overridden from the environment
(or a `.env` file) and, for the keys in MODIFIABLE_SETTINGS, from overrides.json.
"""

import os
import sys
import pathlib
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(override=True)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ('true', '1', 't', 'yes', 'y')


#* --- Core Paths ---
BASE_DIR = pathlib.Path(os.getenv("KEEPALIVE_HOME", os.getcwd())).resolve()
RUN_DIR = BASE_DIR / "run"
LOGS_DIR = BASE_DIR / "logs"

#* --- Application File Paths ---
LOG_DB_PATH = LOGS_DIR / "keepalive_logs.db"
PID_FILE_PATH = RUN_DIR / "keepalive.pid"
OVERRIDES_JSON_PATH = RUN_DIR / "overrides.json"
WORKER_STATUS_PATH = RUN_DIR / "worker_status.json"

#* --- Process Titles ---
SUPERVISOR_PROCESS_TITLE = "Keepalive - Supervisor"
WORKER_PROCESS_TITLE = "Keepalive - Worker"

#* --- Worker Launch ---
PYTHON_EXECUTABLE = os.getenv("PYTHON_EXECUTABLE", sys.executable)
# A shell-style command line. Empty means "run the bundled worker entry point".
WORKER_COMMAND = os.getenv("WORKER_COMMAND", "")
# The worker is told it runs supervised in production through this variable.
WORKER_MODE_ENV_VAR = "KEEPALIVE_ENV"
WORKER_MODE = "production"
# 'module:callable' returning the external session object the watchdog observes.
WORKER_SESSION_FACTORY = os.getenv("WORKER_SESSION_FACTORY", "keepalive.worker.session:LocalSession")
# Optional 'module:callable' run by the watchdog's integrity probe.
INTEGRITY_CHECK = os.getenv("INTEGRITY_CHECK", "")

#* --- Supervisor Settings ---
MAX_RESTARTS = int(os.getenv("MAX_RESTARTS", "50"))
RESTART_WINDOW_SECONDS = 300
RESTART_DELAY_SECONDS = 5          # fixed, not exponential
HEALTH_POLL_INTERVAL = 30          # pid existence check
EXIT_POLL_INTERVAL = 1             # non-blocking reap of the worker
RUNNING_GRACE_PERIOD = 30          # seconds without a crash before 'running'
GRACEFUL_SHUTDOWN_TIMEOUT = 10     # seconds before force-killing
RESTART_EXIT_CODE = 75             # worker exit code meaning "restart required"
EXIT_ON_RESTART_REQUIRED = _env_flag("EXIT_ON_RESTART_REQUIRED", "False")

#* --- Watchdog Settings ---
ACTIVITY_INTERVAL = 30
HEARTBEAT_INTERVAL = 20
HEALTH_CHECK_INTERVAL = 60
INTEGRITY_CHECK_INTERVAL = 300
HOST_KEEPALIVE_INTERVAL = 10
MAX_MISSED_HEARTBEATS = 3          # low on purpose, restarts are cheap
ACTIVITY_STALL_SECONDS = 300
HEALTHY_LATENCY_MS = 1000
HOST_KEEPALIVE_ENABLED = _env_flag("HOST_KEEPALIVE_ENABLED", "True")

#* --- Status API (served by the supervisor) ---
STATUS_API_HOST = os.getenv("STATUS_API_HOST", "127.0.0.1")
STATUS_API_PORT = int(os.getenv("STATUS_API_PORT", "8765"))

#* --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
VERBOSE_LOGGING = False

# Grafana Loki (for observability)
LOKI_ENABLED = _env_flag("LOKI_ENABLED", "False")
LOKI_URL = os.getenv("LOKI_URL", "http://localhost:3100")
LOKI_ORG_ID = os.getenv("LOKI_ORG_ID", "fake")

#* --- MODIFIABLE SETTINGS (Changeable via overrides.json) ---
MODIFIABLE_SETTINGS = {
    # Supervisor
    "MAX_RESTARTS", "RESTART_WINDOW_SECONDS", "RESTART_DELAY_SECONDS",
    "HEALTH_POLL_INTERVAL", "GRACEFUL_SHUTDOWN_TIMEOUT", "EXIT_ON_RESTART_REQUIRED",
    # Watchdog
    "ACTIVITY_INTERVAL", "HEARTBEAT_INTERVAL", "HEALTH_CHECK_INTERVAL",
    "MAX_MISSED_HEARTBEATS", "ACTIVITY_STALL_SECONDS",
    # Logging
    "LOG_BUFFER_SIZE", "LOG_BUFFER_FLUSH_INTERVAL",
    "MAX_LOG_DB_SIZE_MB", "LOG_DB_SIZE_CHECK_INTERVAL_SECONDS", "LOG_HISTORY_COUNT",
}

#* --- Default Values for Modifiable Logging Settings ---
LOG_BUFFER_SIZE = 100
LOG_BUFFER_FLUSH_INTERVAL = 10
MAX_LOG_DB_SIZE_MB = 100
LOG_DB_SIZE_CHECK_INTERVAL_SECONDS = 12 * 3600  # 12 hours
LOG_HISTORY_COUNT = 50
