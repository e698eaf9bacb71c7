"""
Filesystem-backed token -> resource mapping.

The directory layout is the record; there is no separate index:

    <shares_root>/<locator>/resource.json
    <uploads_root>/<locator>/resource.json
    <uploads_root>/<locator>/files/      upload sandbox
    <uploads_root>/<locator>/partial/    in-progress uploads

A record directory is claimed with ``os.mkdir`` (exclusive) and becomes
visible only once its manifest is published with ``os.replace``. Deleting
unlinks the manifest first, so a lookup sees a resource either whole or not
at all.
"""

import logging
import os
import shutil
import uuid
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError

from sharegate.config import Config
from sharegate.core.errors import (
    Denied,
    InvalidReference,
    NotFound,
    PathEscape,
    ResourceConflict,
)
from sharegate.core.paths import PathGuard, path_guard
from sharegate.core.tokens import AccessToken, TokenCodec, get_locator, hashed_locator
from sharegate.schemas import Share, Upload, resource_adapter

logger = logging.getLogger(__name__)

MANIFEST = "resource.json"
SANDBOX_DIR = "files"
PARTIAL_DIR = "partial"
KINDS = ("share", "upload")

Resource = Union[Share, Upload]


class ResourceStore:
    """Owns every share and upload binding under the configured roots."""

    def __init__(
        self,
        files_root: Union[str, Path],
        shares_root: Union[str, Path],
        uploads_root: Union[str, Path],
        codec: Optional[TokenCodec] = None,
        locator: Callable[[str], str] = hashed_locator,
        guard: PathGuard = path_guard,
    ):
        self.files_root = Path(os.path.realpath(files_root))
        self.shares_root = Path(os.path.realpath(shares_root))
        self.uploads_root = Path(os.path.realpath(uploads_root))
        self.codec = codec or TokenCodec()
        self.locator = locator
        self.guard = guard

    @classmethod
    def from_config(cls, config: Config) -> "ResourceStore":
        """Build a store from configuration, creating the roots if needed."""
        config.paths.ensure()
        return cls(
            config.paths.files_root,
            config.paths.shares_root,
            config.paths.uploads_root,
            codec=TokenCodec(config.security.token_bytes),
            locator=get_locator(config.security.locator),
        )

    # ------------------------------------------------------------------
    # Layout helpers
    # ------------------------------------------------------------------

    def _kind_root(self, kind: str) -> Path:
        return self.shares_root if kind == "share" else self.uploads_root

    def _record_dir(self, kind: str, token: str) -> Path:
        return self._kind_root(kind) / self.locator(token)

    def _taken(self, token: str) -> bool:
        return any(self._record_dir(kind, token).exists() for kind in KINDS)

    def _claim(self, record: Path) -> None:
        """Atomically create a record directory or fail if it exists."""
        try:
            os.mkdir(record)
        except FileExistsError:
            raise ResourceConflict(f"Storage location already in use: {record.name}") from None

    def _publish(self, record: Path, resource: Resource) -> None:
        """Write the manifest under a temporary name and rename it into place."""
        temp_path = record / f".{MANIFEST}.{uuid.uuid4().hex}.tmp"
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(resource.model_dump_json(indent=2))
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, record / MANIFEST)
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise

    def _read(self, kind: str, record: Path) -> Optional[Resource]:
        try:
            with open(record / MANIFEST, "r", encoding="utf-8") as f:
                content = f.read()
        except (FileNotFoundError, NotADirectoryError):
            return None
        try:
            resource = resource_adapter.validate_json(content)
        except ValidationError as e:
            logger.error(f"Unreadable {kind} manifest in {record}: {e}")
            return None
        if resource.kind != kind:
            logger.error(f"Manifest in {record} has kind {resource.kind!r}, expected {kind!r}")
            return None
        return resource

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def _validate_references(self, files: Iterable[str]) -> List[str]:
        refs: List[str] = []
        for raw in files:
            try:
                path = self.guard.resolve(self.files_root, raw)
                ref = self.guard.normalize(raw)
            except (PathEscape, Denied) as e:
                raise InvalidReference(f"{raw!r} is not inside the files root") from e
            if self.guard.contains(self.shares_root, path) or self.guard.contains(self.uploads_root, path):
                raise InvalidReference(f"{raw!r} lies inside the share/upload store")
            if not path.is_file():
                raise InvalidReference(f"{raw!r} is not an existing file")
            if ref not in refs:
                refs.append(ref)
        if not refs:
            raise InvalidReference("A share needs at least one file")
        return refs

    def create_share(
        self,
        files: Iterable[str],
        expires: Optional[datetime] = None,
        label: Optional[str] = None,
    ) -> AccessToken:
        """Bind a new token to a set of files under the files root.

        Args:
            files: Relative references; order is kept and duplicates dropped.
            expires: Optional instant after which the share stops resolving.
            label: Optional title shown to the recipient.

        Returns:
            The new token.

        Raises:
            InvalidReference: If any reference escapes the files root, is
                missing or is not a regular file.
            ResourceConflict: If the record location is already taken.
        """
        refs = self._validate_references(files)
        token = self.codec.generate(self._taken)
        record = self._record_dir("share", token)
        self._claim(record)
        try:
            self._publish(record, Share(token=token, files=refs, label=label, expires=expires))
        except BaseException:
            shutil.rmtree(record, ignore_errors=True)
            raise
        logger.info(f"Created share {record.name[:12]} with {len(refs)} file(s)")
        return token

    def create_upload(
        self,
        name: str,
        max_file_size: Optional[int] = None,
        quota: Optional[int] = None,
        expires: Optional[datetime] = None,
    ) -> AccessToken:
        """Bind a new token to a fresh, dedicated upload directory.

        Args:
            name: Simple destination name shown to the uploader and operator.
            max_file_size: Optional per-file ceiling in bytes.
            quota: Optional ceiling on the total bytes received.
            expires: Optional instant after which the upload stops resolving.

        Raises:
            InvalidReference: If ``name`` is not a single plain segment.
            ResourceConflict: If the destination directory already exists.
        """
        try:
            segment = self.guard.segment(name)
        except (PathEscape, Denied) as e:
            raise InvalidReference(f"Upload name must be a single plain segment: {name!r}") from e
        if segment != name:
            raise InvalidReference(f"Upload name must be a single plain segment: {name!r}")

        token = self.codec.generate(self._taken)
        record = self._record_dir("upload", token)
        self._claim(record)
        try:
            (record / SANDBOX_DIR).mkdir()
            (record / PARTIAL_DIR).mkdir()
            upload = Upload(
                token=token,
                name=name,
                directory=f"{record.name}/{SANDBOX_DIR}",
                max_file_size=max_file_size,
                quota=quota,
                expires=expires,
            )
            self._publish(record, upload)
        except BaseException:
            shutil.rmtree(record, ignore_errors=True)
            raise
        logger.info(f"Created upload {record.name[:12]} ({name})")
        return token

    # ------------------------------------------------------------------
    # Lookup / deletion
    # ------------------------------------------------------------------

    def get(self, token: str) -> Resource:
        """Return the resource bound to ``token``, expired or not.

        Raises:
            InvalidToken: If ``token`` is malformed.
            NotFound: If nothing is published for it.
        """
        token = self.codec.parse(token)
        for kind in KINDS:
            resource = self._read(kind, self._record_dir(kind, token))
            if resource is not None and resource.token == token:
                return resource
        raise NotFound("No resource is bound to this token")

    def lookup(self, token: str) -> Resource:
        """Return the resource bound to ``token``.

        Raises:
            InvalidToken: If ``token`` is malformed.
            NotFound: If nothing is published for it or it has expired.
        """
        resource = self.get(token)
        if resource.is_expired():
            raise NotFound("Resource has expired")
        return resource

    def delete(self, token: str, purge: bool = False) -> Resource:
        """Remove the binding for ``token``.

        Requests already authorized finish against what they resolved. Shares
        lose their record directory; uploads keep their received files for the
        operator unless ``purge`` is set.

        Returns:
            The resource that was removed.

        Raises:
            NotFound: If no resource is bound to ``token``.
        """
        resource = self.get(token)
        record = self._record_dir(resource.kind, resource.token)
        try:
            os.unlink(record / MANIFEST)
        except FileNotFoundError:
            raise NotFound("Resource was already removed") from None

        if resource.kind == "share" or purge:
            try:
                shutil.rmtree(record)
            except OSError as e:
                logger.error(f"Failed to remove {record}: {e}")
        logger.info(f"Deleted {resource.kind} {record.name[:12]}")
        return resource

    def list_resources(self, kind: Optional[str] = None) -> List[Resource]:
        """All published resources (expired ones included), oldest first."""
        found: List[Resource] = []
        for k in KINDS if kind is None else (kind,):
            root = self._kind_root(k)
            if not root.is_dir():
                continue
            for entry in root.iterdir():
                if entry.is_dir():
                    resource = self._read(k, entry)
                    if resource is not None:
                        found.append(resource)
        return sorted(found, key=lambda r: r.created)

    # ------------------------------------------------------------------
    # Upload sandboxes
    # ------------------------------------------------------------------

    def upload_sandbox(self, upload: Upload) -> Path:
        """Absolute destination directory of ``upload``."""
        return self.guard.resolve(self.uploads_root, upload.directory)

    def partial_dir(self, upload: Upload) -> Path:
        return self.upload_sandbox(upload).parent / PARTIAL_DIR

    def received_files(self, upload: Upload) -> List[Tuple[str, int]]:
        """Names and sizes of the completed files in ``upload``."""
        sandbox = self.upload_sandbox(upload)
        if not sandbox.is_dir():
            return []
        files = []
        for entry in sorted(sandbox.iterdir()):
            if entry.is_file():
                files.append((entry.name, entry.stat().st_size))
        return files

    def used_bytes(self, upload: Upload) -> int:
        return sum(size for _, size in self.received_files(upload))

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def purge_expired(self) -> int:
        """Unbind every expired resource. Returns how many were removed."""
        count = 0
        for resource in self.list_resources():
            if resource.is_expired():
                try:
                    self.delete(resource.token)
                    count += 1
                except NotFound:
                    pass
        if count:
            logger.info(f"Removed {count} expired resource(s)")
        return count

    def cleanup_partials(self) -> int:
        """Delete leftover partial files. Only safe while no upload is running."""
        count = 0
        if not self.uploads_root.is_dir():
            return 0
        for record in self.uploads_root.iterdir():
            partial = record / PARTIAL_DIR
            if not partial.is_dir():
                continue
            for leftover in partial.iterdir():
                try:
                    leftover.unlink()
                    count += 1
                except OSError as e:
                    logger.error(f"Failed to delete stale partial {leftover}: {e}")
        if count:
            logger.info(f"Cleaned up {count} stale partial upload(s)")
        return count
