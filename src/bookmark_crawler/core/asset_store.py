"""Filesystem-backed asset storage.

Each asset lives in its own directory::

    <root>/<user_id>/<asset_id>/asset.bin
    <root>/<user_id>/<asset_id>/metadata.json

``metadata.json`` records the content type and original file name.  User and
asset ids are restricted to ``[A-Za-z0-9_-]`` so that neither can escape the
store root.  All blocking filesystem work runs in a worker thread via
:func:`asyncio.to_thread`.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from bookmark_crawler.core.exceptions import AssetStorageError

logger = logging.getLogger(__name__)

_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")

_BLOB_NAME = "asset.bin"
_METADATA_NAME = "metadata.json"


@dataclass(frozen=True)
class AssetMetadata:
    content_type: str
    file_name: Optional[str] = None


@dataclass(frozen=True)
class StoredAsset:
    data: bytes
    metadata: AssetMetadata


def _validate_id(value: str, kind: str) -> str:
    if not value or not _SAFE_ID_RE.match(value):
        raise AssetStorageError(f"Invalid {kind} id: {value!r}")
    return value


class AssetStore:
    """Read/write/delete binary assets keyed by ``(user_id, asset_id)``.

    Args:
        root: Directory under which all assets are stored.  Created on first
            write if it does not exist.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    @staticmethod
    def new_asset_id() -> str:
        return uuid.uuid4().hex

    def _asset_dir(self, user_id: str, asset_id: str) -> Path:
        return self._root / _validate_id(user_id, "user") / _validate_id(asset_id, "asset")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def save_asset(
        self,
        user_id: str,
        asset_id: str,
        data: bytes,
        metadata: AssetMetadata,
    ) -> None:
        """Write *data* and its metadata, replacing any existing asset with the same id."""
        asset_dir = self._asset_dir(user_id, asset_id)

        def _write() -> None:
            asset_dir.mkdir(parents=True, exist_ok=True)
            (asset_dir / _BLOB_NAME).write_bytes(data)
            self._write_metadata(asset_dir, metadata)

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            raise AssetStorageError(f"Failed to save asset: {exc}", asset_id=asset_id) from exc

    async def save_asset_from_file(
        self,
        user_id: str,
        asset_id: str,
        path: str | Path,
        metadata: AssetMetadata,
    ) -> None:
        """Move an existing file (e.g. an archiver's temp output) into the store."""
        asset_dir = self._asset_dir(user_id, asset_id)
        source = Path(path)

        def _move() -> None:
            asset_dir.mkdir(parents=True, exist_ok=True)
            shutil.move(str(source), asset_dir / _BLOB_NAME)
            self._write_metadata(asset_dir, metadata)

        try:
            await asyncio.to_thread(_move)
        except OSError as exc:
            raise AssetStorageError(f"Failed to move asset file: {exc}", asset_id=asset_id) from exc

    @staticmethod
    def _write_metadata(asset_dir: Path, metadata: AssetMetadata) -> None:
        payload = {"content_type": metadata.content_type, "file_name": metadata.file_name}
        (asset_dir / _METADATA_NAME).write_text(json.dumps(payload), encoding="utf-8")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def read_asset(self, user_id: str, asset_id: str) -> StoredAsset:
        """Return the asset bytes and metadata.

        Raises:
            AssetStorageError: If the asset does not exist or cannot be read.
        """
        asset_dir = self._asset_dir(user_id, asset_id)

        def _read() -> StoredAsset:
            data = (asset_dir / _BLOB_NAME).read_bytes()
            raw = json.loads((asset_dir / _METADATA_NAME).read_text(encoding="utf-8"))
            return StoredAsset(
                data=data,
                metadata=AssetMetadata(
                    content_type=raw.get("content_type") or "application/octet-stream",
                    file_name=raw.get("file_name"),
                ),
            )

        try:
            return await asyncio.to_thread(_read)
        except (OSError, ValueError) as exc:
            raise AssetStorageError(f"Failed to read asset: {exc}", asset_id=asset_id) from exc

    async def get_asset_size(self, user_id: str, asset_id: str) -> int:
        asset_dir = self._asset_dir(user_id, asset_id)
        try:
            stat = await asyncio.to_thread((asset_dir / _BLOB_NAME).stat)
        except OSError as exc:
            raise AssetStorageError(f"Failed to stat asset: {exc}", asset_id=asset_id) from exc
        return stat.st_size

    # ------------------------------------------------------------------
    # Deletes
    # ------------------------------------------------------------------

    async def delete_asset(self, user_id: str, asset_id: str) -> None:
        asset_dir = self._asset_dir(user_id, asset_id)
        try:
            await asyncio.to_thread(shutil.rmtree, asset_dir)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise AssetStorageError(f"Failed to delete asset: {exc}", asset_id=asset_id) from exc

    async def silent_delete(self, user_id: str, asset_id: Optional[str]) -> None:
        """Delete an asset, logging instead of raising on failure.

        Used after a transaction has committed a replacement: a leftover file
        is only wasted space, never a correctness problem.  ``None`` is a no-op.
        """
        if not asset_id:
            return
        try:
            await self.delete_asset(user_id, asset_id)
        except AssetStorageError as exc:
            logger.warning("asset_store: failed to delete asset %s: %s", asset_id, exc)
