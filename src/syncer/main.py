"""
Syncer entry point: mirrors recently updated Flickr photos into a
Telegram channel.

Runs as a long-lived systemd service under the ``flickr-syncer`` user.
Every ``sync_interval_seconds`` it attempts one run:

    acquire lease -> read cursor -> page through Flickr -> per photo:
    map, upsert metadata, decide publish / edit / skip -> commit cursor
    -> release lease

Key behaviours:
    - Loads configuration from ``/etc/flickr-channel/settings.toml``.
    - Several nodes may run the daemon; the lease (``syncer.lease``) makes
      sure only one run works at a time.  A node that does not get the
      lease skips the tick.
    - The cursor only moves after every page was processed, so a failed
      run leaves it in place and the next run redoes the same window.
      Upserts and hash comparison make that redo cheap and side-effect free.
    - Run-level failures go to the error-reporting chat; process-level
      failures (configuration, authorisation, stuck lease) stop the daemon.
    - Handles SIGTERM / SIGINT for graceful shutdown between runs.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import signal
import sys
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from publisher.formatter import generate_photo_message
from publisher.message_hash import generate_message_hash
from publisher.telegram_publisher import TelegramPublisher
from shared.audit import AuditLogger
from shared.config import (
    Settings,
    database_config,
    load_config,
    require_run_settings,
    resolve_settings,
)
from shared.db import get_connection_pool, init_database
from shared.errors import (
    ErrorKind,
    ErrorScope,
    LeaseReleaseError,
    SyncError,
    classify,
)
from shared.secrets import get_optional_secret
from syncer.flickr_client import FlickrClient
from syncer.lease import PostgresLease, release_with_retry
from syncer.mapper import map_record
from syncer.models import Photo, PhotoRecord, PublishedMessage
from syncer.photo_store import PhotoStore
from syncer.progress import RunProgress

logger = logging.getLogger("syncer.main")

PHOTO_URL_TEMPLATE = "https://live.staticflickr.com/{server}/{id}_{secret}_c.jpg"


# ---------------------------------------------------------------------------
# Run model
# ---------------------------------------------------------------------------


class RunState(enum.Enum):
    ACQUIRING = "acquiring"
    ADVANCING_CURSOR = "advancing_cursor"
    PAGING = "paging"
    PROCESSING_PHOTO = "processing_photo"
    COMMITTING_CURSOR = "committing_cursor"
    RELEASING = "releasing"
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"


class PublishAction(enum.Enum):
    PUBLISH = "publish"
    EDIT = "edit"
    SKIP = "skip"


@dataclass
class SyncDeps:
    """Collaborators of a run.  Built once by ``main()``; tests pass fakes."""

    store: PhotoStore
    flickr: FlickrClient
    publisher: TelegramPublisher
    lease: PostgresLease
    audit: Optional[AuditLogger] = None
    clock: Callable[[], float] = time.time
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep


@dataclass
class RunContext:
    """Per-run state, threaded through every step of one run."""

    run_id: str
    started_at: int
    action: str
    settings: Settings
    progress: RunProgress
    state: RunState = RunState.ACQUIRING
    cursor_before: Optional[int] = None

    def enter(self, state: RunState) -> None:
        logger.debug("[%s] %s -> %s", self.run_id, self.state.value, state.value)
        self.state = state


@dataclass
class PhotoOutcome:
    photo_id: str
    action: Optional[PublishAction]
    message_id: Optional[int] = None

    @property
    def label(self) -> str:
        if self.action is None:
            return "private"
        return {
            PublishAction.PUBLISH: "published",
            PublishAction.EDIT: "edited",
            PublishAction.SKIP: "unchanged",
        }[self.action]


@dataclass
class RunResult:
    run_id: str
    state: RunState
    cursor_before: Optional[int] = None
    cursor_after: Optional[int] = None
    counts: Dict[str, int] = field(default_factory=dict)
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Per-photo decision
# ---------------------------------------------------------------------------


def photo_url(photo: Photo) -> str:
    """Canonical medium-size (``_c``, 800px) static URL of ``photo``."""
    return PHOTO_URL_TEMPLATE.format(server=photo.server, id=photo.id, secret=photo.secret)


def decide_action(
    existing: Optional[PublishedMessage],
    chat_id: str,
    content_hash: str,
) -> PublishAction:
    """What to do with the channel for one public photo.

    ============================  ==========
    existing message               action
    ============================  ==========
    none                           PUBLISH
    in another chat                PUBLISH
    same chat, same hash           SKIP
    same chat, different hash      EDIT
    ============================  ==========
    """
    if existing is None:
        return PublishAction.PUBLISH
    if str(existing.chat_id) != str(chat_id):
        return PublishAction.PUBLISH
    if existing.content_hash == content_hash:
        return PublishAction.SKIP
    return PublishAction.EDIT


async def _store_record(deps: SyncDeps, record: PhotoRecord) -> None:
    await deps.store.upsert_photo(record.photo)
    for tag in record.tags:
        await deps.store.upsert_tag(tag)
    if record.exif is not None:
        await deps.store.upsert_exif(record.exif)
    if record.owner is not None:
        await deps.store.upsert_owner(record.owner)


async def process_photo(
    ctx: RunContext,
    deps: SyncDeps,
    listed: Dict[str, Any],
) -> PhotoOutcome:
    """Sync one listed photo: metadata always, channel message if public."""
    ctx.enter(RunState.PROCESSING_PHOTO)
    photo_id = str(listed["id"])
    secret = listed.get("secret")

    info = await deps.flickr.get_info(photo_id, secret)
    exif = await deps.flickr.get_exif(photo_id, secret)
    record = map_record(info, exif)
    await _store_record(deps, record)

    photo = record.photo
    if not photo.is_public:
        logger.debug("[%s] Photo %s is private; metadata only", ctx.run_id, photo.id)
        return PhotoOutcome(photo_id=photo.id, action=None)

    chat_id = str(ctx.settings.photo_channel_id)
    body = generate_photo_message(photo, record.exif, record.tags)
    content_hash = generate_message_hash(body)
    url = photo_url(photo)

    existing = await deps.store.get_published_message(photo.id)
    action = decide_action(existing, chat_id, content_hash)

    if action is PublishAction.SKIP:
        return PhotoOutcome(photo_id=photo.id, action=action, message_id=existing.message_id)

    if action is PublishAction.PUBLISH:
        message_id = await deps.publisher.publish(chat_id, url, body)
        shown_url = url
    else:
        message_id = await deps.publisher.edit(chat_id, existing.message_id, body)
        # Editing changes the caption only; the message keeps its photo.
        shown_url = existing.photo_url

    await deps.store.put_published_message(
        PublishedMessage(
            photo_id=photo.id,
            chat_id=chat_id,
            message_id=message_id,
            content_hash=content_hash,
            photo_url=shown_url,
        )
    )
    await _audit(
        ctx,
        deps,
        "photo_published" if action is PublishAction.PUBLISH else "photo_edited",
        {"photo_id": photo.id, "chat_id": chat_id, "message_id": message_id},
    )
    return PhotoOutcome(photo_id=photo.id, action=action, message_id=message_id)


# ---------------------------------------------------------------------------
# One run
# ---------------------------------------------------------------------------


async def _audit(
    ctx: RunContext,
    deps: SyncDeps,
    action: str,
    details: Optional[Dict[str, Any]] = None,
    success: bool = True,
) -> None:
    if deps.audit is not None:
        await deps.audit.log(action, details, success=success, run_id=ctx.run_id)


async def _report(ctx: RunContext, deps: SyncDeps, text: str) -> None:
    """Send ``text`` to the error chat; a failing report is only logged."""
    try:
        await deps.publisher.report_error(ctx.settings.error_reporting_chat_id, text)
    except Exception:
        logger.exception("[%s] Failed to report error to Telegram", ctx.run_id)


def _describe(exc: BaseException) -> str:
    if isinstance(exc, SyncError):
        return str(exc)
    return f"{exc.__class__.__name__}: {exc}"


async def _record_failure(
    ctx: RunContext, deps: SyncDeps, exc: BaseException, result: RunResult
) -> None:
    """Log, audit and report a failed run, and fill in ``result``."""
    kind = classify(exc)
    failed_in = ctx.state
    ctx.enter(RunState.FAILED)
    result.error_kind = kind
    result.error = _describe(exc)
    logger.error(
        "[%s] Run failed in %s (%s): %s",
        ctx.run_id,
        failed_in.value,
        kind.value,
        result.error,
        exc_info=kind is ErrorKind.UNCLASSIFIED,
    )
    await _audit(
        ctx,
        deps,
        "run_failed",
        {"kind": kind.value, "state": failed_in.value, "error": result.error},
        success=False,
    )
    await _report(ctx, deps, result.error)


async def _sync_pages(ctx: RunContext, deps: SyncDeps) -> int:
    """Page through every listed photo since the cursor.  Returns the new
    cursor value once every page has been processed."""
    ctx.enter(RunState.ADVANCING_CURSOR)
    cursor = await deps.store.get_cursor(ctx.action)
    if cursor is None:
        cursor = ctx.settings.initial_timestamp
    ctx.cursor_before = cursor

    page_number = 1
    while True:
        ctx.enter(RunState.PAGING)
        page = await deps.flickr.fetch_page(ctx.action, cursor, page_number)
        for listed in page.photos:
            outcome = await process_photo(ctx, deps, listed)
            ctx.progress.record(outcome.label)
        ctx.progress.page_done(page_number, page.pages, len(page.photos))
        if page.is_last:
            break
        page_number += 1

    ctx.enter(RunState.COMMITTING_CURSOR)
    await deps.store.set_cursor(ctx.action, ctx.started_at)
    return max(cursor, ctx.started_at)


async def _release(ctx: RunContext, deps: SyncDeps) -> None:
    settings = ctx.settings
    try:
        await release_with_retry(
            deps.lease,
            max_attempts=settings.release_max_attempts,
            initial_delay=settings.release_initial_delay,
            max_delay=settings.release_max_delay,
            sleep=deps.sleep,
        )
    except LeaseReleaseError as exc:
        await _audit(ctx, deps, "lease_release_failed", {"attempts": exc.attempts}, success=False)
        await _report(ctx, deps, _describe(exc))
        raise


async def run_once(
    deps: SyncDeps,
    settings: Settings,
    run_id: Optional[str] = None,
) -> RunResult:
    """Execute one complete run.

    Returns:
        ``RunResult`` with state ``DONE``, ``SKIPPED`` (lease held
        elsewhere) or ``FAILED`` (run-level error, already reported).

    Raises:
        SyncError: Process-level failures (configuration, authorisation,
            lease release), after reporting them.
    """
    ctx = RunContext(
        run_id=run_id or uuid.uuid4().hex[:12],
        started_at=int(deps.clock()),
        action=settings.action,
        settings=settings,
        progress=RunProgress(settings.action),
    )
    ctx.progress.run_id = ctx.run_id

    ctx.enter(RunState.ACQUIRING)
    try:
        acquired = await deps.lease.acquire()
    except Exception as exc:
        # Nothing is held, so there is nothing to release.
        result = RunResult(run_id=ctx.run_id, state=RunState.FAILED)
        await _record_failure(ctx, deps, exc, result)
        if result.error_kind.scope is ErrorScope.PROCESS:
            raise
        return result

    if not acquired:
        ctx.enter(RunState.SKIPPED)
        logger.info("[%s] Another run holds the lease; skipping", ctx.run_id)
        await _audit(ctx, deps, "run_skipped", {"lease": deps.lease.name})
        return RunResult(run_id=ctx.run_id, state=RunState.SKIPPED)

    await _audit(ctx, deps, "run_start", {"action": ctx.action, "started_at": ctx.started_at})
    result = RunResult(run_id=ctx.run_id, state=RunState.FAILED)
    try:
        try:
            require_run_settings(settings)
            result.cursor_after = await _sync_pages(ctx, deps)
        except Exception as exc:
            await _record_failure(ctx, deps, exc, result)
            if result.error_kind.scope is ErrorScope.PROCESS:
                raise
    finally:
        final_state = ctx.state
        ctx.enter(RunState.RELEASING)
        await _release(ctx, deps)
        ctx.enter(RunState.FAILED if final_state is RunState.FAILED else RunState.DONE)

    result.state = ctx.state
    result.cursor_before = ctx.cursor_before
    result.counts = ctx.progress.as_dict()
    if result.state is RunState.DONE:
        ctx.progress.log_complete()
        await _audit(ctx, deps, "run_complete", {"cursor": result.cursor_after, **result.counts})
    else:
        result.cursor_after = ctx.cursor_before
    return result


# ---------------------------------------------------------------------------
# Graceful shutdown
# ---------------------------------------------------------------------------

_shutdown_event: threading.Event = threading.Event()


async def _sleep_with_shutdown(seconds: float) -> bool:
    """Sleep for up to ``seconds`` while remaining responsive to shutdown."""
    if _shutdown_event.is_set():
        return True

    remaining = max(0.0, seconds)
    while remaining > 0:
        if _shutdown_event.is_set():
            return True
        tick = min(0.5, remaining)
        await asyncio.sleep(tick)
        remaining -= tick
    return _shutdown_event.is_set()


def _handle_signal(sig: int, frame: Any) -> None:
    """Signal handler; sets the shutdown event so the loop exits between runs."""
    logger.info("Received signal %s, initiating graceful shutdown...", sig)
    _shutdown_event.set()


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


async def main() -> None:
    """Top-level async entry point for the syncer service."""
    # --- config & secrets ---
    config = load_config()
    settings = resolve_settings(config)
    logger.info("Loaded %r from %s", settings, config["_meta_config_path"])

    db_config = database_config(config)
    db_password = get_optional_secret("database_password")
    if db_password:
        db_config["password"] = db_password

    pool = None
    audit = None
    try:
        # --- database ---
        pool = await get_connection_pool(db_config)
        await init_database(pool)
        audit = AuditLogger(pool, service="syncer", log_path=settings.audit_log_path)
        await audit.log("startup", {"action": settings.action}, success=True)

        flickr = FlickrClient(
            settings.oauth_credentials,
            reauthorize_url=settings.reauthorize_url,
            per_page=settings.per_page,
        )
        async with TelegramPublisher(settings.telegram_bot_token) as publisher, flickr:
            deps = SyncDeps(
                store=PhotoStore(pool),
                flickr=flickr,
                publisher=publisher,
                lease=PostgresLease(pool, name=settings.lease_name),
                audit=audit,
            )

            # --- main loop ---
            run_number = 0
            while not _shutdown_event.is_set():
                run_number += 1
                result = await run_once(deps, settings)
                logger.info(
                    "Run #%d (%s) finished: %s %s",
                    run_number,
                    result.run_id,
                    result.state.value,
                    result.counts,
                )

                # Wait for the next cycle or a shutdown signal
                await _sleep_with_shutdown(settings.sync_interval_seconds)
    finally:
        if audit is not None:
            try:
                await audit.close()
            except Exception:
                logger.exception("Failed to close audit logger")
        if pool is not None:
            try:
                await pool.close()
            except Exception:
                logger.exception("Failed to close database pool")
        logger.info("Syncer shut down.")


def run() -> None:
    """Synchronous entry point (called from ``__main__`` or systemd)."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    try:
        asyncio.run(main())
    except SyncError as exc:
        logger.critical("Syncer stopped (%s): %s", exc.kind.value, exc)
        sys.exit(1)


if __name__ == "__main__":
    run()
