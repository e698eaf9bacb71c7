"""
Public endpoints: a token plus a file name, nothing else.

Every denial (bad token, unknown token, uncovered name, traversal attempt)
surfaces as the same 404 through the app's error handler.
"""

import logging

from fastapi import APIRouter, Request, status
from fastapi.responses import FileResponse, Response
from starlette.requests import ClientDisconnect

from sharegate.core.errors import NotFound, PathEscape
from sharegate.core.rate_limit import limiter, user_limit
from sharegate.core.utils import declared_length
from sharegate.schemas import (
    FileEntry,
    Share,
    ShareListing,
    Upload,
    UploadInfo,
    UploadResult,
)
from sharegate.services.upload_service import MultipartReceiver, receive

logger = logging.getLogger(__name__)

router = APIRouter()


def _lookup(request: Request, token: str):
    store = request.app.state.store
    return store.lookup(store.codec.parse(token))


def _share(request: Request, token: str) -> Share:
    resource = _lookup(request, token)
    if not isinstance(resource, Share):
        raise NotFound("Token is not bound to a share")
    return resource


def _upload(request: Request, token: str) -> Upload:
    resource = _lookup(request, token)
    if not isinstance(resource, Upload):
        raise NotFound("Token is not bound to an upload")
    return resource


@router.get("/share/{token}", response_model=ShareListing)
@limiter.limit(user_limit)
async def list_share(request: Request, token: str):
    """List the files a share grants."""
    share = _share(request, token)
    authorizer = request.app.state.share_authorizer

    entries = []
    for name in authorizer.list(share):
        try:
            path = authorizer.authorize(share, name)
        except PathEscape:
            logger.warning(f"Shared file {name} now resolves outside the files root")
            continue
        if not path.is_file():
            logger.warning(f"Shared file {name} is missing from the files root")
            continue
        entries.append(FileEntry(name=name, size=path.stat().st_size))
    return ShareListing(label=share.label, files=entries, expires=share.expires)


@router.get("/share/{token}/{file_path:path}")
@limiter.limit(user_limit)
async def download_shared(request: Request, token: str, file_path: str):
    """Download one file of a share."""
    share = _share(request, token)
    path = request.app.state.share_authorizer.authorize(share, file_path)
    if not path.is_file():
        raise NotFound(f"{file_path!r} is no longer on disk")

    logger.info(f"Serving shared file {path.name}")
    return FileResponse(path=path, filename=path.name)


@router.get("/upload/{token}", response_model=UploadInfo)
@limiter.limit(user_limit)
async def upload_info(request: Request, token: str):
    """Describe an upload destination and its remaining limit."""
    upload = _upload(request, token)
    authorizer = request.app.state.upload_authorizer
    return UploadInfo(
        name=upload.name,
        max_file_size=upload.max_file_size,
        remaining_bytes=authorizer.limit_for(upload),
        expires=upload.expires,
    )


@router.post("/upload/{token}", response_model=UploadResult, status_code=status.HTTP_201_CREATED)
@limiter.limit(user_limit)
async def upload_files(request: Request, token: str):
    """Handle a multipart upload of one or more files.

    The body is parsed as it streams in; either every file lands or none does.
    """
    upload = _upload(request, token)
    receiver = MultipartReceiver(
        request.app.state.upload_authorizer,
        upload,
        request.headers.get("Content-Type", ""),
    )

    try:
        uploaded = await receiver.receive(request.stream())
    except ClientDisconnect:
        logger.warning(f"Client disconnected during multipart upload to {upload.name}")
        return Response(status_code=499)  # Client Closed Request

    return UploadResult(uploaded=uploaded)


@router.put("/upload/{token}/{name:path}", response_model=UploadResult, status_code=status.HTTP_201_CREATED)
@limiter.limit(user_limit)
async def upload_raw(request: Request, token: str, name: str):
    """Stream a single file from the raw request body."""
    upload = _upload(request, token)
    target = request.app.state.upload_authorizer.authorize(
        upload, name, size=declared_length(request)
    )

    try:
        await receive(target, request.stream())
    except ClientDisconnect:
        logger.warning(f"Client disconnected during upload of {target.name}")
        return Response(status_code=499)  # Client Closed Request

    return UploadResult(uploaded=[target.name])
