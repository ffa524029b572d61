import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BrokenLink:
    id: str
    title: str
    reason: str
    original_url: str


@dataclass
class CycleReport:
    total: int = 0
    active: int = 0
    broken: int = 0
    refreshed: int = 0
    stale: int = 0
    published: bool = False
    duration_ms: int = 0
    finished_at: Optional[datetime] = None

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.finished_at:
            data["finished_at"] = self.finished_at.isoformat() + "Z"
        return data


class Notifier:
    """Reports broken links (one batch per cycle) and cycle summaries."""

    def __init__(self, webhook_url: Optional[str] = None, session=None, timeout: float = 10.0) -> None:
        self.webhook_url = webhook_url
        self.session = session or requests
        self.timeout = timeout

    def broken_links(self, links: List[BrokenLink]) -> Optional[Dict[str, Any]]:
        if not links:
            return None

        payload = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "brokenCount": len(links),
            "links": [
                {
                    "id": link.id,
                    "title": link.title,
                    "reason": link.reason,
                    "originalUrl": link.original_url,
                }
                for link in links
            ],
        }

        lines = [f'  {link.id} - "{link.title}" - {link.reason}' for link in links]
        logger.warning("Broken links detected (%d):\n%s", len(links), "\n".join(lines))

        if self.webhook_url:
            try:
                resp = self.session.post(self.webhook_url, json=payload, timeout=self.timeout)
                resp.raise_for_status()
            except requests.RequestException as exc:
                logger.error("Broken-links webhook failed: %s", exc)
        return payload

    def cycle_summary(self, report: CycleReport) -> None:
        logger.info(
            "Refresh complete: active=%d broken=%d total=%d refreshed=%d stale=%d published=%s duration=%dms",
            report.active,
            report.broken,
            report.total,
            report.refreshed,
            report.stale,
            report.published,
            report.duration_ms,
        )
