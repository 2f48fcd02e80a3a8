"""
Paste routes.
Handles create (PUT), fetch (GET) and delete (DELETE) operations.
"""
from fastapi import APIRouter, BackgroundTasks, Request
from starlette.responses import Response

from pastebox.service import paste_service

router = APIRouter()


@router.put("/")
async def create_paste(request: Request, background: BackgroundTasks) -> Response:
    """
    Create a paste under a random id.
    The body is the raw content; the response body is the paste URL.
    """
    return await paste_service.create(request, background)


@router.put("/{paste_id}")
async def create_named_paste(paste_id: str, request: Request, background: BackgroundTasks) -> Response:
    """
    Create a paste under a caller-chosen id.
    Returns 409 if the id is already taken.
    """
    return await paste_service.create(request, background, paste_id=paste_id)


@router.get("/{paste_id}")
def fetch_paste(paste_id: str, request: Request, background: BackgroundTasks) -> Response:
    """
    Fetch a paste.
    Each uncached fetch increments the view count after the response is sent.
    """
    return paste_service.fetch(request, background, paste_id)


@router.delete("/{paste_id}")
def delete_paste(paste_id: str, request: Request, background: BackgroundTasks) -> Response:
    """
    Delete a paste early.
    Requires the X-Delete-Token issued when the paste was created.
    """
    return paste_service.remove(request, background, paste_id)
