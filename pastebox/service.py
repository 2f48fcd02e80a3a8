"""
Paste service: PUT, GET and DELETE against the store and the edge cache.

Work the client does not wait for (view counting, cache writes, cache
invalidation, reclaiming expired pastes) is queued on the request's
BackgroundTasks and runs after the response has been sent.
"""
import hmac
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from fastapi import BackgroundTasks, Request
from starlette.concurrency import run_in_threadpool
from starlette.responses import Response

from pastebox.cache import ResponseCache, response_cache
from pastebox.config import settings
from pastebox.database import PasteDatabase, db
from pastebox.errors import (
    ClientError,
    Forbidden,
    Gone,
    HotlinkBlocked,
    MissingDeleteToken,
    NotFound,
    PayloadTooLarge,
)
from pastebox.identifiers import allocate_id, validate_explicit_id
from pastebox.lifecycle import current_timestamp, format_timestamp, is_expired, next_expiry, remaining_seconds
from pastebox.models import Counters, PasteRecord, SystemInfo, UploaderInfo
from pastebox.security import build_response, is_hotlink, render_markdown_page, text_response, wants_html
from pastebox.sniffer import apply_type_hint, sniff

logger = logging.getLogger(__name__)

# Single-value client address headers, most trusted first
CLIENT_IP_HEADERS = ("cf-connecting-ip", "x-real-ip")


def run_side_effect(name: str, func: Callable[..., Any], *args: Any) -> None:
    """Run a deferred task, logging instead of propagating any failure."""
    try:
        func(*args)
    except Exception:
        logger.exception(f"Background task '{name}' failed")


def request_origin(request: Request) -> str:
    if settings.PUBLIC_URL:
        return settings.PUBLIC_URL.rstrip("/")
    return f"{request.url.scheme}://{request.url.netloc}"


def uploader_info(request: Request) -> UploaderInfo:
    ip = None
    for header in CLIENT_IP_HEADERS:
        ip = request.headers.get(header)
        if ip:
            break
    if not ip:
        forwarded = request.headers.get("x-forwarded-for", "")
        ip = forwarded.split(",")[0].strip() or (request.client.host if request.client else None)
    return UploaderInfo(
        ip=ip,
        ua=request.headers.get("user-agent"),
        country=request.headers.get("cf-ipcountry"),
    )


async def read_body(request: Request, max_size: int) -> bytes:
    """
    Read the request body, refusing anything over `max_size` bytes.

    The declared Content-Length is checked before reading; the streamed
    length is checked while reading.
    """
    declared = request.headers.get("content-length")
    if declared:
        try:
            if int(declared) > max_size:
                raise PayloadTooLarge()
        except ValueError:
            raise ClientError("Invalid Content-Length")

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > max_size:
            raise PayloadTooLarge()
    return bytes(body)


def paste_headers(paste: PasteRecord, now: int) -> dict:
    headers = {
        "Content-Type": paste.system.mime or "text/plain",
        "Cache-Control": f"public, max-age={remaining_seconds(now, paste.expires_at)}",
        "X-Paste-Views": str(paste.counters.views + 1),
        "X-Paste-Expires-At": format_timestamp(paste.expires_at),
    }
    if paste.system.dimensions:
        headers["X-Image-Dimensions"] = paste.system.dimensions
    return headers


class PasteService:
    """Orchestrates the paste lifecycle for the HTTP routes."""

    def __init__(self, database: PasteDatabase = db, cache: ResponseCache = response_cache):
        self.database = database
        self.cache = cache

    async def create(self, request: Request, background: BackgroundTasks, paste_id: Optional[str] = None) -> Response:
        """
        Store the request body as a new paste.

        Returns:
            200 response whose body is the paste URL, with X-Delete-Token

        Raises:
            PayloadTooLarge: Body over the configured limit
            ClientError: Invalid explicit id
            Conflict: Id already taken (after one retry for random ids)
        """
        if paste_id:
            validate_explicit_id(paste_id)

        content = await read_body(request, settings.MAX_SIZE)

        info = apply_type_hint(sniff(content), request.headers.get("content-type"))
        now = current_timestamp(request.headers.get("x-test-now-ms"))
        expires_at = next_expiry(now, settings.EXPIRATION_TTL)
        delete_token = str(uuid.uuid4())

        uploader = uploader_info(request)
        system = SystemInfo(
            mime=info.mime,
            extension=info.extension,
            delete_token=delete_token,
            width=info.width,
            height=info.height,
        )

        def insert(candidate: str) -> bool:
            return self.database.save_paste(
                paste_id=candidate,
                content=content,
                uploader=uploader,
                counters=Counters(),
                system=system,
                created_at=now,
                expires_at=expires_at,
            )

        # the store client blocks, so keep it off the event loop
        final_id = await run_in_threadpool(
            allocate_id,
            insert,
            explicit_id=paste_id,
            extension=info.extension,
            length=settings.ID_LENGTH,
            now=datetime.fromtimestamp(now, tz=timezone.utc),
        )
        logger.info(f"Created paste {final_id} ({info.mime}, {len(content)} bytes)")

        background.add_task(run_side_effect, "expired sweep", self.database.delete_expired, now)

        return text_response(
            f"{request_origin(request)}/{final_id}",
            headers={
                "Content-Type": "text/plain",
                "Cache-Control": "no-store",
                "X-Delete-Token": delete_token,
            },
        )

    def fetch(self, request: Request, background: BackgroundTasks, paste_id: str) -> Response:
        """
        Serve a paste, from the edge cache when possible.

        Raises:
            HotlinkBlocked: Cross-site embedding attempt
            NotFound: Unknown id
        """
        if is_hotlink(request):
            raise HotlinkBlocked()

        cached = self.cache.lookup(request)
        if cached is not None:
            return cached

        now = current_timestamp(request.headers.get("x-test-now-ms"))
        paste = self.database.get_paste(paste_id)
        if paste is None:
            raise NotFound()

        if is_expired(now, paste.expires_at):
            logger.info(f"Paste {paste_id} has expired")
            # returned rather than raised so the reclaim task is kept
            background.add_task(run_side_effect, "reclaim expired", self.database.delete_paste, paste_id)
            return text_response(Gone.detail, Gone.status_code, headers={"Cache-Control": "no-store"})

        background.add_task(run_side_effect, "view counter", self.database.record_view, paste_id, now)

        headers = paste_headers(paste, now)
        if paste_id.endswith(".md") and wants_html(request):
            headers["Content-Type"] = "text/html; charset=utf-8"
            page = render_markdown_page(paste_id, paste.content.decode("utf-8", errors="replace"))
            response = build_response(page.encode("utf-8"), headers=headers, html_page=True)
        else:
            response = build_response(paste.content, headers=headers)

        max_age = remaining_seconds(now, paste.expires_at)
        background.add_task(run_side_effect, "cache populate", self.cache.store, request, response, max_age)
        return response

    def remove(self, request: Request, background: BackgroundTasks, paste_id: str) -> Response:
        """
        Delete a paste with its delete token.

        Raises:
            MissingDeleteToken: No X-Delete-Token header
            NotFound: Unknown id
            Forbidden: Token mismatch
        """
        token = request.headers.get("x-delete-token")
        if not token:
            raise MissingDeleteToken()

        system = self.database.get_system_info(paste_id)
        if system is None:
            raise NotFound()

        expected = system.delete_token or ""
        if not expected or not hmac.compare_digest(expected.encode("utf-8"), token.encode("utf-8")):
            logger.warning(f"Rejected delete of {paste_id}: token mismatch")
            raise Forbidden()

        self.database.delete_paste(paste_id)
        # cache keys carry the URL the edge saw, not PUBLIC_URL
        canonical_url = f"{request.url.scheme}://{request.url.netloc}/{paste_id}"
        background.add_task(run_side_effect, "cache invalidate", self.cache.invalidate, canonical_url)

        return text_response("Deleted", headers={"Cache-Control": "no-store"})


paste_service = PasteService()
