import asyncio
import logging
import secrets
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .codec import decode
from .coordinator import BatchCoordinator
from .exceptions import CredentialError, DecodeError, ResolutionError
from .models import StatusOut, UploadIn, UploadOut, UploadResult
from .resolver import UNKNOWN_TITLE
from .storage import Entry, RelaySettings
from .url_utils import normalize_media_url

logger = logging.getLogger(__name__)


def check_password(supplied: str, expected: str) -> None:
    if not secrets.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
        raise CredentialError("Invalid password")


def create_app(
    settings: Optional[RelaySettings] = None,
    coordinator: Optional[BatchCoordinator] = None,
) -> FastAPI:
    if settings is None:
        settings = coordinator.settings if coordinator else RelaySettings.from_env()
    coordinator = coordinator or BatchCoordinator(settings)

    app = FastAPI(title="StreamRelay")
    app.state.settings = settings
    app.state.coordinator = coordinator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def startup_event():
        coordinator.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        await coordinator.stop()

    @app.post("/api/upload", response_model=UploadOut)
    async def upload_links(body: UploadIn):
        try:
            check_password(body.password, settings.api_password)
        except CredentialError:
            raise HTTPException(401, "Invalid password")

        if not isinstance(body.links, list) or not all(isinstance(u, str) for u in body.links):
            raise HTTPException(400, "Links array required")

        loop = asyncio.get_running_loop()
        resolver = coordinator.resolver
        results = []

        for url in body.links:
            normalized = normalize_media_url(url)
            if not normalized:
                results.append(UploadResult(original_url=url, title=UNKNOWN_TITLE, status="invalid"))
                continue

            try:
                stream = await loop.run_in_executor(None, resolver.resolve, normalized)
            except ResolutionError as exc:
                logger.warning("Upload of %s failed to resolve: %s", normalized, exc.reason)
                stream = None
            except Exception:
                logger.exception("Resolver crashed for %s", normalized)
                stream = None

            if stream is not None:
                title = stream.title
            else:
                info = await loop.run_in_executor(None, resolver.describe, normalized)
                title = info.title

            entry_id = coordinator.submit(normalized, stream, title=title)
            entry = coordinator.find(entry_id)
            results.append(
                UploadResult(
                    original_url=url,
                    public_link=coordinator.publisher.public_link(entry.token),
                    title=entry.title,
                    internal_id=entry_id,
                    status="success" if entry.valid else "failed",
                )
            )

        window_minutes = settings.batch_window_seconds / 60
        return UploadOut(
            results=results,
            message=f"{len(results)} links processed. Refresh will happen in {window_minutes:g} minutes.",
        )

    @app.get("/api/status", response_model=StatusOut)
    def get_status():
        status = coordinator.status()
        return StatusOut(
            total_links=status["total_links"],
            pending_uploads=status["pending_uploads"],
            is_refreshing=status["is_refreshing"],
            debounce_armed=status["debounce_armed"],
            next_refresh="Scheduled" if status["debounce_armed"] else "None",
            last_refresh=status["last_refresh"],
            last_report=status["last_report"],
        )

    @app.get("/api/links/{token}", response_model=Entry)
    def get_link(token: str):
        try:
            entry_id = decode(token, issued=coordinator.allocator.is_issued)
        except DecodeError as exc:
            raise HTTPException(400, str(exc))
        entry = coordinator.registry.get(entry_id)
        if entry is None:
            raise HTTPException(404)
        return entry

    return app


app = create_app()
