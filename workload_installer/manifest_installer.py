from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Tuple

from .errors import ManifestError, ManifestInstallFailure
from .layout import InstallLayout
from .lib.fs import atomic_write_text
from .manifests import load_manifest, parse_manifest_text
from .types import ManifestId, ManifestVersion, SdkFeatureBand

logger = logging.getLogger(__name__)

MANIFEST_FILE_NAME = "workload-manifest.yaml"
OFFLINE_MANIFESTS_DIR = "manifests"


def manifest_source_path(source_root: Path, manifest_id: ManifestId, version: ManifestVersion) -> Path:
    return source_root / manifest_id.value / version.value / MANIFEST_FILE_NAME


class ManifestInstaller:
    """Publishes manifests into the install root, one active version per (id, band).

    A manifest is validated in full before it is published, and published
    with a single rename, so resolution for a band sees either the previous
    manifest or the new one.
    """

    def __init__(self, layout: InstallLayout, manifest_source: Path) -> None:
        self.layout = layout
        self.manifest_source = manifest_source

    def _source_root(self, offline_cache: Optional[Path]) -> Path:
        if offline_cache is not None:
            return offline_cache / OFFLINE_MANIFESTS_DIR
        return self.manifest_source

    def install_manifest(
        self,
        manifest_id: ManifestId,
        manifest_version: ManifestVersion,
        feature_band: SdkFeatureBand,
        offline_cache: Optional[Path] = None,
    ) -> Path:
        src = manifest_source_path(self._source_root(offline_cache), manifest_id, manifest_version)
        if not src.is_file():
            raise ManifestInstallFailure(
                f"Manifest {manifest_id}@{manifest_version} not found at {src}"
            )

        try:
            text = src.read_text(encoding="utf-8")
            manifest = parse_manifest_text(text)
        except (OSError, ManifestError) as e:
            raise ManifestInstallFailure(f"Manifest {manifest_id}@{manifest_version} is unusable: {e}") from e

        if manifest.id != manifest_id or manifest.version != manifest_version:
            raise ManifestInstallFailure(
                f"Manifest at {src} declares {manifest.id}@{manifest.version}, "
                f"expected {manifest_id}@{manifest_version}"
            )

        dest = self.layout.manifest_file(manifest_id, feature_band)
        try:
            atomic_write_text(dest, text)
        except OSError as e:
            raise ManifestInstallFailure(f"Could not publish manifest {manifest_id} for {feature_band}: {e}") from e

        logger.info(
            "Installed manifest %s@%s for band %s (offline_cache=%s)",
            manifest_id,
            manifest_version,
            feature_band,
            offline_cache,
        )
        return dest

    def get_installed_manifests(self, feature_band: SdkFeatureBand) -> List[Tuple[ManifestId, ManifestVersion]]:
        band_dir = self.layout.band_manifests_dir(feature_band)
        if not band_dir.is_dir():
            return []
        out: List[Tuple[ManifestId, ManifestVersion]] = []
        for p in sorted(band_dir.glob("*.yaml")):
            m = load_manifest(p)
            out.append((m.id, m.version))
        return out
