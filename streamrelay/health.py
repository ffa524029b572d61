from dataclasses import dataclass
from typing import Optional

import requests

PROBE_TIMEOUT = 10.0


@dataclass(frozen=True)
class ProbeResult:
    reachable: bool
    status_code: int
    error: Optional[str] = None

    @property
    def reason(self) -> str:
        return self.error or f"HTTP {self.status_code}"


def probe(stream_url: str, timeout: float = PROBE_TIMEOUT, session=None) -> ProbeResult:
    """HEAD the stream URL. Never raises; failures come back as unreachable."""
    http = session or requests
    try:
        resp = http.head(stream_url, timeout=timeout, allow_redirects=True)
    except requests.RequestException as exc:
        status = exc.response.status_code if exc.response is not None else 0
        return ProbeResult(reachable=False, status_code=status, error=str(exc) or type(exc).__name__)

    reachable = 200 <= resp.status_code < 300
    return ProbeResult(reachable=reachable, status_code=resp.status_code)
