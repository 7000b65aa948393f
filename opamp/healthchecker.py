"""HTTP health checks of the supervised agent."""

from __future__ import annotations

import urllib.error
import urllib.request

DEFAULT_TIMEOUT = 10.0


class HealthCheckError(Exception):
    """Raised when the health endpoint answers with a status other than 200."""


class HTTPHealthChecker:
    """Checks an agent's health by a GET on its health endpoint."""

    def __init__(self, endpoint: str) -> None:
        self.endpoint = endpoint

    def check(self, timeout: float = DEFAULT_TIMEOUT) -> None:
        """Return if the endpoint answers 200.

        Raises HealthCheckError for any other status, and OSError when the
        endpoint cannot be reached.
        """
        request = urllib.request.Request(self.endpoint, method="GET")
        try:
            with urllib.request.urlopen(request, timeout=timeout) as response:
                status = response.status
        except urllib.error.HTTPError as exc:
            status = exc.code
            exc.close()
        if status != 200:
            raise HealthCheckError(f"health check on {self.endpoint} returned {status}")