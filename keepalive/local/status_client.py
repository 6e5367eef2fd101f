import json
import time
import logging
import requests
from typing import Dict, Any, Optional

log = logging.getLogger(__name__)


def fetch_status(host: str, port: int, retries: int = 3, delay: float = 0.5,
                 path: str = "/status") -> Optional[Dict[str, Any]]:
    """
    Fetches a snapshot from the Supervisor's status API.

    :param host: The host of the Supervisor's status API.
    :param port: The port of the Supervisor's status API.
    :param retries: Number of attempts if the API isn't reachable yet.
    :param delay: Delay in seconds between retries.
    :param path: '/status' for the full snapshot, '/health' for the liveness probe.
    :return: The decoded JSON document, or None on failure.
    """
    url = f"http://{host}:{port}{path}"
    for attempt in range(retries):
        try:
            response = requests.get(url, timeout=2)
            response.raise_for_status()
            return response.json()
        except json.JSONDecodeError as e:
            log.error(f"Failed to decode status JSON from Supervisor: {e}")
            return None  # Do not retry on malformed data
        except requests.exceptions.RequestException as e:
            log.debug(
                f"Could not reach Supervisor status API (attempt {attempt + 1}/{retries}): {e}. "
                f"Retrying in {delay}s..."
            )
            if attempt + 1 < retries:
                time.sleep(delay)

    log.warning(f"Supervisor status API at '{url}' unreachable after {retries} attempts.")
    return None
