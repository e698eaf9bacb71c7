"""
Access decisions for share downloads and upload destinations.

Both authorizers are stateless: they decide from the looked-up resource and
the request alone, and route every name through the shared ``PathGuard``.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from sharegate.core.errors import Denied, NameConflict, TooLarge
from sharegate.core.paths import PathGuard, path_guard
from sharegate.schemas import Share, Upload
from sharegate.services.resource_store import ResourceStore


class ShareAuthorizer:
    """Grants access to exactly the files a share enumerates."""

    def __init__(self, files_root: Path, guard: PathGuard = path_guard):
        self.files_root = files_root
        self.guard = guard

    def authorize(self, share: Share, requested: str) -> Path:
        """Map a requested name to the file to serve.

        Raises:
            PathEscape: If ``requested`` does not normalize inside the root.
            Denied: If it is not one of the share's references.
        """
        name = self.guard.normalize(requested)
        if name not in share.files:
            raise Denied(f"{name!r} is not part of this share")
        return self.guard.resolve(self.files_root, name)

    def list(self, share: Share) -> List[str]:
        return list(share.files)


@dataclass(frozen=True)
class UploadTarget:
    """Where an authorized upload goes and how much it may write."""
    name: str
    path: Path
    partial_dir: Path
    limit: Optional[int]


class UploadAuthorizer:
    """Decides whether an incoming file may be written into an upload."""

    def __init__(
        self,
        store: ResourceStore,
        max_file_size: Optional[int] = None,
        guard: PathGuard = path_guard,
    ):
        self.store = store
        self.max_file_size = max_file_size
        self.guard = guard

    def limit_for(self, upload: Upload, reserved: int = 0) -> Optional[int]:
        """Largest number of bytes the next file may have, or None if unlimited.

        ``reserved`` counts bytes already written but not yet published, such as
        earlier files of the same multipart request.
        """
        caps = [cap for cap in (self.max_file_size, upload.max_file_size) if cap is not None]
        if upload.quota is not None:
            caps.append(max(0, upload.quota - self.store.used_bytes(upload) - reserved))
        return min(caps) if caps else None

    def authorize(
        self,
        upload: Upload,
        incoming_name: str,
        size: Optional[int] = None,
        reserved: int = 0,
    ) -> UploadTarget:
        """Validate an incoming file name (and declared size) for ``upload``.

        Existing names are never replaced or renamed: a second attempt with the
        same name is rejected, so retrying a finished upload is harmless.

        Raises:
            PathEscape: If the name tries to leave the upload's directory.
            Denied: If the name has more than one segment or is too long.
            NameConflict: If a file with that name was already received.
            TooLarge: If ``size`` exceeds the current limit.
        """
        sandbox = self.store.upload_sandbox(upload)
        name = self.guard.segment(incoming_name)
        path = self.guard.resolve(sandbox, name)
        if path.exists() or path.is_symlink():
            raise NameConflict(f"{name!r} was already uploaded")

        limit = self.limit_for(upload, reserved)
        if size is not None and limit is not None and size > limit:
            raise TooLarge(f"{name!r} is {size} bytes, limit is {limit}", limit=limit)

        return UploadTarget(
            name=name,
            path=path,
            partial_dir=self.store.partial_dir(upload),
            limit=limit,
        )
