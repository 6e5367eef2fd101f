import json
import time
import logging
import threading
from pathlib import Path
from http.server import HTTPServer, BaseHTTPRequestHandler
from typing import TYPE_CHECKING, Any, Dict, Optional

from keepalive.local.supervisor import persistence

if TYPE_CHECKING:
    from .supervisor import ProcessSupervisor

log = logging.getLogger(__name__)


class StatusServiceHandler(BaseHTTPRequestHandler):
    """
    A read-only request handler for the supervisor's status API.
    This runs in a thread within the Supervisor process.
    """
    # Set on the server-specific subclass before the server starts
    supervisor: "ProcessSupervisor" = None
    worker_status_path: Optional[Path] = None
    started_at: float = 0.0

    def _send_json(self, code: int, payload: Dict[str, Any]) -> None:
        body = json.dumps(payload, indent=4).encode("utf-8")
        self.send_response(code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self):
        if self.path == "/status":
            payload = {"supervisor": self.supervisor.get_status(), "worker": None}
            if self.worker_status_path is not None:
                payload["worker"] = persistence.read_worker_status(self.worker_status_path)
            self._send_json(200, payload)
        elif self.path == "/health":
            self._send_json(200, {"status": "healthy", "uptime": round(time.time() - self.started_at, 1)})
        else:
            self._send_json(404, {"error": "Not Found"})

    def log_message(self, format_str: str, *args: Any) -> None:
        """Override to direct HTTP server logs to our application's logger."""
        log.debug("StatusService: " + (format_str % args))


def create_status_server(supervisor: "ProcessSupervisor", host: str, port: int,
                         worker_status_path: Optional[Path] = None) -> HTTPServer:
    """
    Binds the status API server. Port 0 picks a free port.

    :raises OSError: If the address cannot be bound.
    """
    handler = type("BoundStatusServiceHandler", (StatusServiceHandler,), {
        "supervisor": supervisor,
        "worker_status_path": worker_status_path,
        "started_at": time.time(),
    })
    server = HTTPServer((host, port), handler)
    server.timeout = 1
    return server


def run_status_service(server: HTTPServer, stop_event: threading.Event) -> None:
    """Serves requests until the stop event is set. Meant for a daemon thread."""
    host, port = server.server_address[:2]
    log.info(f"Status API service listening on http://{host}:{port}")
    try:
        while not stop_event.is_set():
            server.handle_request()
    finally:
        server.server_close()
        log.info("Status API service shut down.")


def start_status_service(supervisor: "ProcessSupervisor", config: Dict[str, Any],
                         stop_event: threading.Event) -> Optional[threading.Thread]:
    """
    Starts the status API in a background thread. A bind failure is logged and
    the supervisor keeps running without it.
    """
    try:
        server = create_status_server(
            supervisor,
            config["STATUS_API_HOST"],
            config["STATUS_API_PORT"],
            config.get("WORKER_STATUS_PATH"),
        )
    except OSError as e:
        log.error(f"Could not start status API on {config['STATUS_API_HOST']}:{config['STATUS_API_PORT']}: {e}")
        return None

    thread = threading.Thread(target=run_status_service, args=(server, stop_event), daemon=True,
                              name="StatusServiceThread")
    thread.start()
    return thread
