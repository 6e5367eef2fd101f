import sys
import socket
import logging
import requests
import threading
from collections import deque
from typing import Any, Deque, Dict, Optional

INTERNAL_LOGGER = "LokiHandler.Internal"


class LokiHandler(logging.Handler):
    """
    A logging handler that pushes logs to a Grafana Loki instance in batches
    from a background thread.
    """
    def __init__(self, url: str, process_name: str, org_id: Optional[str] = None,
                 flush_interval: float = 10, batch_size: int = 200):
        """
        Initializes the Loki handler.

        :param url: The base URL of the Loki instance.
        :param process_name: Value of the 'process' stream label.
        :param org_id: The tenant ID for Loki ('X-Scope-OrgID').
        :param flush_interval: Seconds between background pushes.
        :param batch_size: Push as soon as this many records are buffered.
        """
        super().__init__()
        self.url = f"{url.rstrip('/')}/loki/api/v1/push"
        self.process_name = process_name
        self.org_id = org_id
        self.flush_interval = flush_interval
        self.batch_size = batch_size
        self.hostname = socket.gethostname() or 'unknown-host'
        self.log_buffer: Deque[Dict[str, Any]] = deque()
        self.buffer_lock = threading.Lock()
        self.session = requests.Session()

        self.stop_event = threading.Event()
        self.flush_thread = threading.Thread(target=self._periodic_flush, daemon=True, name="LokiFlushThread")
        self.flush_thread.start()

    def _periodic_flush(self) -> None:
        while not self.stop_event.wait(self.flush_interval):
            self.flush()
        # Final flush on stop, ensuring any remaining logs are sent
        self.flush()

    def emit(self, record: logging.LogRecord) -> None:
        """
        Formats a log record and adds it to the buffer, pushing when the batch is full.

        :param record: The log record to be processed.
        """
        if record.name == INTERNAL_LOGGER:
            return
        try:
            log_entry = {
                "stream": {
                    "job": "keepalive",
                    "process": self.process_name,
                    "level": record.levelname.lower(),
                    "hostname": self.hostname,
                    "logger": record.name,
                },
                "values": [
                    [str(int(record.created * 1e9)), self.format(record)]
                ]
            }
            with self.buffer_lock:
                self.log_buffer.append(log_entry)
                should_flush = len(self.log_buffer) >= self.batch_size
            if should_flush:
                self.flush()
        except Exception as e:
            print(f"ERROR: LokiHandler failed to process a log record: {e}", file=sys.stderr)

    def flush(self) -> None:
        """Pushes the buffered records. The HTTP call happens outside the buffer lock."""
        with self.buffer_lock:
            if not self.log_buffer:
                return
            logs_to_send = list(self.log_buffer)
            self.log_buffer.clear()

        headers = {'Content-Type': 'application/json'}
        if self.org_id:
            headers['X-Scope-OrgID'] = self.org_id
        try:
            response = self.session.post(self.url, json={"streams": logs_to_send}, headers=headers, timeout=5)
            # 204 No Content is the success status for Loki push
            if response.status_code != 204:
                # emit() drops records of this logger, so a failing push is never re-pushed
                logging.getLogger(INTERNAL_LOGGER).error(
                    f"Loki returned non-204 status: {response.status_code} - {response.text}"
                )
        except requests.RequestException as e:
            print(f"CRITICAL: Failed to send {len(logs_to_send)} logs to Loki: {e}", file=sys.stderr)

    def close(self) -> None:
        """Stops the flush thread after its final push."""
        self.stop_event.set()
        if self.flush_thread.is_alive():
            self.flush_thread.join(timeout=self.flush_interval + 2)
        self.session.close()
        super().close()
