"""
Operator endpoints for minting and revoking tokens.
"""

import logging
from datetime import timedelta
from typing import List, Literal, Optional, Union

from fastapi import APIRouter, Depends, Header, Request

from sharegate.core.errors import NotFound
from sharegate.core.rate_limit import admin_limit, limiter
from sharegate.core.utils import resource_url
from sharegate.schemas import (
    CreateShareRequest,
    CreateUploadRequest,
    FileEntry,
    ReceivedFiles,
    ResourceCreated,
    Share,
    Upload,
    utcnow,
)

logger = logging.getLogger(__name__)


def verify_admin(request: Request, x_admin_key: Optional[str] = Header(None)):
    """Reject callers outside the operator's network or without the master key."""
    request.app.state.admin_service.verify_request(request, x_admin_key)


router = APIRouter(dependencies=[Depends(verify_admin)])


def _expiry(request: Request, hours: Optional[float]):
    if hours is None:
        hours = request.app.state.config.logic.default_expiry_hours
    if hours is None:
        return None
    return utcnow() + timedelta(hours=hours)


def _created(request: Request, kind: str, token: str, expires) -> ResourceCreated:
    base = request.app.state.config.server.link_base()
    return ResourceCreated(kind=kind, token=token, url=resource_url(base, kind, token), expires=expires)


@router.post("/shares", response_model=ResourceCreated, status_code=201)
@limiter.limit(admin_limit)
async def create_share(request: Request, data: CreateShareRequest):
    """Create a share over files that already live under the files root."""
    store = request.app.state.store
    expires = _expiry(request, data.expires_in_hours)
    token = store.create_share(data.files, expires=expires, label=data.label)
    return _created(request, "share", token, expires)


@router.post("/uploads", response_model=ResourceCreated, status_code=201)
@limiter.limit(admin_limit)
async def create_upload(request: Request, data: CreateUploadRequest):
    """Create a fresh upload destination."""
    store = request.app.state.store
    quota = data.quota if data.quota is not None else request.app.state.config.logic.default_quota
    expires = _expiry(request, data.expires_in_hours)
    token = store.create_upload(
        data.name,
        max_file_size=data.max_file_size,
        quota=quota,
        expires=expires,
    )
    return _created(request, "upload", token, expires)


@router.get("/resources", response_model=List[Union[Share, Upload]])
@limiter.limit(admin_limit)
async def list_resources(request: Request, kind: Optional[Literal["share", "upload"]] = None):
    """List every share and upload, expired ones included."""
    return request.app.state.store.list_resources(kind)


@router.get("/resources/{token}", response_model=Union[Share, Upload])
@limiter.limit(admin_limit)
async def get_resource(request: Request, token: str):
    return request.app.state.store.get(token)


@router.get("/uploads/{token}/files", response_model=ReceivedFiles)
@limiter.limit(admin_limit)
async def received_files(request: Request, token: str):
    """Files an upload has received so far."""
    store = request.app.state.store
    upload = store.get(token)
    if not isinstance(upload, Upload):
        raise NotFound("Token is not bound to an upload")
    files = [FileEntry(name=name, size=size) for name, size in store.received_files(upload)]
    return ReceivedFiles(
        token=upload.token,
        name=upload.name,
        files=files,
        used_bytes=sum(f.size for f in files),
    )


@router.delete("/resources/{token}")
@limiter.limit(admin_limit)
async def delete_resource(request: Request, token: str, purge: bool = False):
    """Revoke a token. Received upload files are kept unless ``purge`` is set."""
    resource = request.app.state.store.delete(token, purge=purge)
    return {"status": "success", "kind": resource.kind, "purged": purge}
