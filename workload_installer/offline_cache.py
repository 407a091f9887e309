from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .errors import PackNotFound
from .lib.fs import copy_tree
from .lib.pack_content import copy_content, locate_pack_content
from .manifest_installer import OFFLINE_MANIFESTS_DIR, manifest_source_path
from .types import ManifestId, ManifestVersion, PackInfo

logger = logging.getLogger(__name__)


class OfflineCache:
    """Stages pack and manifest content for later disconnected installs.

    The cache directory has the same shape as the pack feed, so an install
    pointed at it finds payloads the same way it does online. Manifests live
    under ``<cache>/manifests/<id>/<version>/``.
    """

    def __init__(self, pack_source: Path, manifest_source: Optional[Path] = None) -> None:
        self.pack_source = pack_source
        self.manifest_source = manifest_source

    def download_pack(self, pack: PackInfo, cache_path: Path, include_previews: bool) -> Optional[Path]:
        """Copy a pack payload into ``cache_path`` without installing it.

        Returns the staged path, or None when the pack is a preview and
        previews were not requested.
        """

        if pack.is_prerelease and not include_previews:
            logger.info("Skipping preview pack %s (include_previews=False)", pack)
            return None

        existing = locate_pack_content(cache_path, pack)
        if existing is not None:
            logger.info("Pack %s already cached at %s", pack, existing)
            return existing

        content = locate_pack_content(self.pack_source, pack)
        if content is None:
            raise PackNotFound(f"Pack {pack} not found in {self.pack_source}", pack=pack)

        staged = copy_content(content, cache_path)
        logger.info("Cached pack %s at %s", pack, staged)
        return staged

    def download_manifest(self, manifest_id: ManifestId, version: ManifestVersion, cache_path: Path) -> Path:
        if self.manifest_source is None:
            raise FileNotFoundError("No manifest source configured")
        src = manifest_source_path(self.manifest_source, manifest_id, version)
        if not src.is_file():
            raise FileNotFoundError(str(src))
        dest_dir = manifest_source_path(cache_path / OFFLINE_MANIFESTS_DIR, manifest_id, version).parent
        copy_tree(src.parent, dest_dir)
        logger.info("Cached manifest %s@%s at %s", manifest_id, version, dest_dir)
        return dest_dir
