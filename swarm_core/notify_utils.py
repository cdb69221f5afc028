import json
import logging
import threading
from typing import List, Optional

import requests

logger = logging.getLogger(__name__)

_REQUEST_TIMEOUT = 10  # seconds

SEVERITY_SUCCESS = 'success'
SEVERITY_FAILURE = 'failure'


class Notifier:
    """Fire-and-forget JSON notifications (Apprise API compatible).

    Each message is posted on its own daemon thread so a slow or broken
    endpoint never delays the reconciliation pass.
    """

    def __init__(self, url: Optional[str], hostname: str = ''):
        self.url = (url or '').strip() or None
        self.hostname = hostname
        self._threads: List[threading.Thread] = []

    @property
    def enabled(self) -> bool:
        return self.url is not None

    def notify(self, title: str, body: str, severity: str) -> None:
        if not self.enabled:
            return
        payload = {'title': title, 'body': body, 'type': severity}
        t = threading.Thread(target=self._send, args=(payload,), daemon=True)
        self._threads = [th for th in self._threads if th.is_alive()]
        self._threads.append(t)
        t.start()

    def _send(self, payload: dict) -> None:
        try:
            response = requests.post(
                self.url,
                data=json.dumps(payload),
                headers={'Content-Type': 'application/json'},
                timeout=_REQUEST_TIMEOUT,
            )
            logger.info(f"Notification '{payload['title']}' sent: HTTP {response.status_code}")
        except requests.RequestException as e:
            logger.warning(f"Notification '{payload['title']}' failed: {e}")

    def flush(self, timeout: float = _REQUEST_TIMEOUT) -> None:
        """Wait for in-flight notifications; used before a run-once exit."""
        for t in self._threads:
            t.join(timeout)
        self._threads = []

    # Message helpers

    def service_updated(self, service: str, image: str) -> None:
        self.notify(
            f"[Swarm updater] Service {service} updated",
            f"{self.hostname} updated service {service} to {image}",
            SEVERITY_SUCCESS,
        )

    def service_failed(self, service: str, image: Optional[str], reason: str) -> None:
        target = f" to {image}" if image else ''
        self.notify(
            f"[Swarm updater] Service {service} update failed",
            f"{self.hostname} could not update service {service}{target}: {reason}",
            SEVERITY_FAILURE,
        )
