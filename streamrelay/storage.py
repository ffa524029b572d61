import os
import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

DEFAULT_PREFIX = "mov"
ID_DIGITS = 3


class Entry(BaseModel):
    id: str
    original_url: str
    token: str | None = None  # public token handed out at upload time
    stream_url: str | None = None
    title: str = "Unknown Video"
    quality: str = "N/A"
    created_at: datetime = Field(default_factory=datetime.utcnow)
    last_refreshed: datetime | None = None
    expires_at: datetime | None = None
    valid: bool = False
    resolve_failures: int = 0


class RelaySettings(BaseModel):
    api_password: str = "your-secure-password"
    github_token: str | None = None
    github_owner: str | None = None
    github_repo: str | None = None
    github_branch: str | None = None
    links_file_path: str = "links.json"
    public_base_url: str | None = None
    id_prefix: str = DEFAULT_PREFIX
    batch_window_seconds: float = 5 * 60
    refresh_interval_seconds: float = 3 * 60 * 60
    probe_timeout_seconds: float = 10.0
    resolve_timeout_seconds: float = 30.0
    stream_ttl_hours: float = 6.0
    max_workers: int = 4
    max_resolve_failures: int | None = None  # None: stale entries are kept forever
    broken_links_webhook_url: str | None = None
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "info"

    @classmethod
    def from_env(cls) -> "RelaySettings":
        """Build settings from the process environment."""
        max_failures = os.getenv("MAX_RESOLVE_FAILURES")
        return cls(
            api_password=os.getenv("API_PASSWORD", "your-secure-password"),
            github_token=os.getenv("GITHUB_TOKEN"),
            github_owner=os.getenv("GITHUB_OWNER"),
            github_repo=os.getenv("GITHUB_REPO"),
            github_branch=os.getenv("GITHUB_BRANCH"),
            links_file_path=os.getenv("LINKS_FILE_PATH", "links.json"),
            public_base_url=os.getenv("PUBLIC_BASE_URL"),
            id_prefix=os.getenv("ID_PREFIX", DEFAULT_PREFIX),
            batch_window_seconds=float(os.getenv("BATCH_WINDOW_MINUTES", 5)) * 60,
            refresh_interval_seconds=float(os.getenv("REFRESH_INTERVAL_HOURS", 3)) * 3600,
            probe_timeout_seconds=float(os.getenv("PROBE_TIMEOUT_SECONDS", 10)),
            resolve_timeout_seconds=float(os.getenv("RESOLVE_TIMEOUT_SECONDS", 30)),
            stream_ttl_hours=float(os.getenv("STREAM_TTL_HOURS", 6)),
            max_workers=int(os.getenv("MAX_WORKERS", 4)),
            max_resolve_failures=int(max_failures) if max_failures else None,
            broken_links_webhook_url=os.getenv("BROKEN_LINKS_WEBHOOK_URL"),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", 3000)),
            log_level=os.getenv("LOG_LEVEL", "info").lower(),
        )


class EntryRegistry:
    """In-memory table of admitted entries, keyed by internal id."""

    def __init__(self) -> None:
        self._entries: Dict[str, Entry] = {}
        self._lock = threading.Lock()

    def get(self, entry_id: str) -> Optional[Entry]:
        with self._lock:
            return self._entries.get(entry_id)

    def merge(self, entries: Iterable[Entry]) -> int:
        """Insert or replace entries; last write wins for a repeated id."""
        count = 0
        with self._lock:
            for entry in entries:
                self._entries[entry.id] = entry
                count += 1
        return count

    def remove(self, entry_ids: Iterable[str]) -> List[Entry]:
        removed = []
        with self._lock:
            for entry_id in entry_ids:
                entry = self._entries.pop(entry_id, None)
                if entry is not None:
                    removed.append(entry)
        return removed

    def snapshot(self) -> List[Entry]:
        with self._lock:
            return list(self._entries.values())

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, entry_id: object) -> bool:
        with self._lock:
            return entry_id in self._entries


class IdAllocator:
    """
    Hands out ids like ``mov001`` from a per-prefix counter.

    Counters only ever move forward, so an id is never handed out twice even
    after its entry has been pruned from the registry.
    """

    def __init__(self, digits: int = ID_DIGITS) -> None:
        self._digits = digits
        self._counters: Dict[str, int] = {}
        self._issued: set[str] = set()
        self._lock = threading.Lock()

    def allocate(self, prefix: str = DEFAULT_PREFIX) -> str:
        with self._lock:
            n = self._counters.get(prefix, 0) + 1
            self._counters[prefix] = n
            entry_id = f"{prefix}{n:0{self._digits}d}"
            self._issued.add(entry_id)
            return entry_id

    def is_issued(self, entry_id: str) -> bool:
        with self._lock:
            return entry_id in self._issued
