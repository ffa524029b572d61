import asyncio
import contextlib
import logging
import time
from datetime import datetime
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Tuple

from . import codec
from .exceptions import PublishConflictError, PublishError, ResolutionError
from .health import ProbeResult, probe
from .notifier import BrokenLink, CycleReport, Notifier
from .publisher import GitHubPublisher, build_mapping
from .resolver import FAILED_TITLE, ResolutionClient, StreamInfo
from .storage import Entry, EntryRegistry, IdAllocator, RelaySettings

logger = logging.getLogger(__name__)


class BatchCoordinator:
    """
    Owns the registry and runs refresh cycles.

    Uploads land in a pending list and (re)arm a single debounce task; when
    the window passes without new uploads the pending list is admitted and a
    cycle runs. A fixed-interval trigger runs the same cycle. At most one
    cycle runs at a time; a trigger that finds one running is dropped.
    """

    def __init__(
        self,
        settings: Optional[RelaySettings] = None,
        registry: Optional[EntryRegistry] = None,
        allocator: Optional[IdAllocator] = None,
        resolver=None,
        prober: Optional[Callable[[str], ProbeResult]] = None,
        publisher=None,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.settings = settings or RelaySettings()
        self.registry = registry or EntryRegistry()
        self.allocator = allocator or IdAllocator()
        self.resolver = resolver or ResolutionClient(
            timeout=self.settings.resolve_timeout_seconds,
            ttl_hours=self.settings.stream_ttl_hours,
        )
        self.prober = prober or partial(probe, timeout=self.settings.probe_timeout_seconds)
        self.publisher = publisher or GitHubPublisher(
            token=self.settings.github_token,
            owner=self.settings.github_owner,
            repo=self.settings.github_repo,
            path=self.settings.links_file_path,
            branch=self.settings.github_branch,
            public_base_url=self.settings.public_base_url,
        )
        self.notifier = notifier or Notifier(self.settings.broken_links_webhook_url)

        self._pending: List[Tuple[str, Entry]] = []
        self._debounce_task: Optional[asyncio.Task] = None
        self._firing_task: Optional[asyncio.Task] = None  # debounce task past its sleep
        self._cycle_running = False
        self._workers = asyncio.Semaphore(max(1, self.settings.max_workers))
        self._shutdown: Optional[asyncio.Event] = None
        self._periodic_task: Optional[asyncio.Task] = None

        self.last_report: Optional[CycleReport] = None
        self.last_cycle_at: Optional[datetime] = None

    # -- state --------------------------------------------------------------

    @property
    def cycle_running(self) -> bool:
        return self._cycle_running

    @property
    def debounce_armed(self) -> bool:
        return self._debounce_task is not None and not self._debounce_task.done()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def find(self, entry_id: str) -> Optional[Entry]:
        """Look an id up in the pending list first, then the registry."""
        for pending_id, entry in self._pending:
            if pending_id == entry_id:
                return entry
        return self.registry.get(entry_id)

    def status(self) -> Dict[str, Any]:
        return {
            "total_links": len(self.registry),
            "pending_uploads": self.pending_count,
            "is_refreshing": self._cycle_running,
            "debounce_armed": self.debounce_armed,
            "last_refresh": self.last_cycle_at,
            "last_report": self.last_report.as_dict() if self.last_report else None,
        }

    # -- submissions --------------------------------------------------------

    def submit(
        self,
        original_url: str,
        stream: Optional[StreamInfo] = None,
        title: Optional[str] = None,
    ) -> str:
        """Park a new entry until the debounce window closes. Must run on the event loop."""
        entry_id = self.allocator.allocate(self.settings.id_prefix)
        now = datetime.utcnow()
        entry = Entry(
            id=entry_id,
            original_url=original_url,
            stream_url=stream.stream_url if stream else None,
            title=title or (stream.title if stream else FAILED_TITLE),
            quality=stream.quality if stream else "N/A",
            created_at=now,
            last_refreshed=now,
            expires_at=stream.expires_at if stream else None,
            token=codec.encode(entry_id),
            valid=stream is not None,
        )
        self._pending.append((entry_id, entry))
        self._arm_debounce()
        return entry_id

    def _arm_debounce(self) -> None:
        if self.debounce_armed:
            self._debounce_task.cancel()
        self._debounce_task = asyncio.create_task(self._debounce(self.settings.batch_window_seconds))

    async def _debounce(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # detach so a submission arriving mid-cycle re-arms instead of cancelling us
        if self._debounce_task is asyncio.current_task():
            self._debounce_task = None
            self._firing_task = asyncio.current_task()
        await self.on_debounce_fire()

    async def on_debounce_fire(self) -> Optional[CycleReport]:
        if self._cycle_running:
            logger.info("Refresh in progress, deferring %d pending uploads", len(self._pending))
            self._arm_debounce()
            return None
        if not self._pending:
            return None

        self._cycle_running = True
        try:
            pending, self._pending = self._pending, []
            admitted = self.registry.merge(entry for _, entry in pending)
            logger.info("Processing %d pending uploads", admitted)
            return await self._guarded_cycle()
        finally:
            self._cycle_running = False

    # -- cycle --------------------------------------------------------------

    async def run_cycle(self) -> Optional[CycleReport]:
        if self._cycle_running:
            logger.info("Refresh already in progress, skipping")
            return None

        self._cycle_running = True
        try:
            return await self._guarded_cycle()
        finally:
            self._cycle_running = False

    async def _guarded_cycle(self) -> Optional[CycleReport]:
        try:
            return await self._execute_cycle()
        except Exception:
            logger.exception("Refresh cycle failed")
            return None

    async def _offload(self, func, *args):
        async with self._workers:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, func, *args)

    async def _execute_cycle(self) -> CycleReport:
        started = time.monotonic()
        logger.info("Starting links refresh")
        report = CycleReport()

        # health
        entries = self.registry.snapshot()
        report.total = len(entries)
        broken = await self._check_health(entries)
        report.broken = len(broken)
        report.active = report.total - report.broken

        # prune
        if broken:
            self.registry.remove(link.id for link in broken)
            self.notifier.broken_links(broken)

        # re-resolve
        report.refreshed, report.stale = await self._refresh_streams(self.registry.snapshot())

        # publish
        report.published = await self._publish()

        report.duration_ms = int((time.monotonic() - started) * 1000)
        report.finished_at = datetime.utcnow()
        self.last_report = report
        self.last_cycle_at = report.finished_at
        self.notifier.cycle_summary(report)
        return report

    async def _probe_entry(self, entry: Entry) -> Optional[BrokenLink]:
        if not entry.stream_url:
            return BrokenLink(entry.id, entry.title, "No stream URL", entry.original_url)
        try:
            result = await self._offload(self.prober, entry.stream_url)
        except Exception as exc:
            logger.exception("Probe crashed for %s", entry.id)
            result = ProbeResult(reachable=False, status_code=0, error=str(exc))
        if result.reachable:
            return None
        return BrokenLink(entry.id, entry.title, result.reason, entry.original_url)

    async def _check_health(self, entries: List[Entry]) -> List[BrokenLink]:
        results = await asyncio.gather(*(self._probe_entry(e) for e in entries))
        return [link for link in results if link is not None]

    async def _resolve_entry(self, entry: Entry) -> Tuple[Entry, Optional[StreamInfo], Optional[str]]:
        try:
            stream = await self._offload(self.resolver.resolve, entry.original_url)
        except ResolutionError as exc:
            return entry, None, exc.reason
        except Exception as exc:
            logger.exception("Resolver crashed for %s", entry.id)
            return entry, None, f"{type(exc).__name__}: {exc}"
        return entry, stream, None

    async def _refresh_streams(self, entries: List[Entry]) -> Tuple[int, int]:
        results = await asyncio.gather(*(self._resolve_entry(e) for e in entries))
        refreshed = stale = 0
        exhausted: List[Entry] = []
        limit = self.settings.max_resolve_failures

        for entry, stream, reason in results:
            if stream is not None:
                entry.stream_url = stream.stream_url
                entry.quality = stream.quality
                entry.expires_at = stream.expires_at
                entry.last_refreshed = datetime.utcnow()
                entry.resolve_failures = 0
                entry.valid = True
                refreshed += 1
                continue

            stale += 1
            entry.valid = False
            entry.resolve_failures += 1
            logger.warning(
                "Re-resolution failed for %s (%d in a row), keeping stale stream: %s",
                entry.id,
                entry.resolve_failures,
                reason,
            )
            if limit and entry.resolve_failures >= limit:
                exhausted.append(entry)

        if exhausted:
            self.registry.remove(entry.id for entry in exhausted)
            logger.warning(
                "Pruned %d entries after %d failed re-resolutions: %s",
                len(exhausted),
                limit,
                ", ".join(entry.id for entry in exhausted),
            )
        return refreshed, stale

    async def _publish(self) -> bool:
        mapping = build_mapping(self.registry.snapshot(), codec.encode)
        try:
            await self._offload(self.publisher.publish, mapping)
        except PublishConflictError as exc:
            logger.warning("Publish lost a race, will retry next cycle: %s", exc)
            return False
        except PublishError as exc:
            logger.error("Publish failed: %s", exc)
            return False
        return True

    # -- scheduling ---------------------------------------------------------

    async def run_periodic(self, shutdown_event: asyncio.Event, interval_seconds: float) -> None:
        """Run a cycle every ``interval_seconds`` until ``shutdown_event`` is set."""
        interval = float(interval_seconds)
        while not shutdown_event.is_set():
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                logger.info("Scheduled refresh triggered")
                await self.run_cycle()

    def start(self) -> None:
        if self._periodic_task is not None:
            return
        self._shutdown = asyncio.Event()
        self._periodic_task = asyncio.create_task(
            self.run_periodic(self._shutdown, self.settings.refresh_interval_seconds)
        )
        logger.info(
            "Auto-refresh every %.1f hours, batch window %.1f minutes",
            self.settings.refresh_interval_seconds / 3600,
            self.settings.batch_window_seconds / 60,
        )

    async def stop(self, grace_seconds: float = 1.0) -> None:
        """Disarm the debounce timer and stop the scheduled trigger."""
        if self.debounce_armed:
            task = self._debounce_task
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._debounce_task = None

        if self._shutdown is not None:
            self._shutdown.set()
        for task in (self._firing_task, self._periodic_task):
            if task is not None:
                await self._finish(task, grace_seconds)
        self._firing_task = None
        self._periodic_task = None

    @staticmethod
    async def _finish(task: asyncio.Task, grace_seconds: float) -> None:
        """Give a task ``grace_seconds`` to complete, then cancel it."""
        if task.done():
            return
        done, _ = await asyncio.wait({task}, timeout=grace_seconds)
        if not done:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
