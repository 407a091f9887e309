from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional, Protocol

from .errors import InstallFailure, PackNotFound, RollbackFailure
from .layout import InstallLayout
from .lib.fs import new_staging_path, prune_empty_parents, remove_tree
from .lib.pack_content import content_name, locate_pack_content, materialize
from .offline_cache import OfflineCache
from .types import PackId, PackInfo, PackKind, SdkFeatureBand

if TYPE_CHECKING:  # pragma: no cover
    from .garbage_collector import GarbageCollector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PackInstallReceipt:
    """What one ``install_pack`` call changed on disk.

    Rollback undoes exactly this: a payload that was already present, or a
    band marker another workload already held, is left alone.
    """

    pack: PackInfo
    feature_band: SdkFeatureBand
    created_payload: bool
    created_marker: bool


class PackInstaller(Protocol):
    def install_pack(
        self, pack: PackInfo, feature_band: SdkFeatureBand, offline_cache: Optional[Path] = None
    ) -> PackInstallReceipt:
        ...

    def rollback_pack(self, receipt: PackInstallReceipt) -> None:
        ...

    def garbage_collect(self) -> None:
        ...

    def get_installed_packs(self, feature_band: SdkFeatureBand) -> List[PackInfo]:
        ...

    def download_to_offline_cache(self, pack: PackInfo, cache_path: Path, include_previews: bool) -> Optional[Path]:
        ...


class FilePackInstaller:
    """Installs pack payloads under an install root.

    Payloads are shared: ``packs/<id>/<version>`` exists once no matter how
    many bands or workloads use it. Each band that uses a pack holds a marker
    under ``metadata/installed-packs``.
    """

    def __init__(
        self,
        layout: InstallLayout,
        pack_source: Path,
        *,
        offline_cache: Optional[OfflineCache] = None,
        garbage_collector: Optional["GarbageCollector"] = None,
    ) -> None:
        self.layout = layout
        self.pack_source = pack_source
        self.offline_cache = offline_cache or OfflineCache(pack_source)
        self.garbage_collector = garbage_collector

    def is_payload_installed(self, pack: PackInfo) -> bool:
        return self.layout.pack_dir(pack).is_dir()

    def install_pack(
        self, pack: PackInfo, feature_band: SdkFeatureBand, offline_cache: Optional[Path] = None
    ) -> PackInstallReceipt:
        dest = self.layout.pack_dir(pack)
        marker = self.layout.pack_marker(pack, feature_band)
        created_payload = False

        if self.is_payload_installed(pack):
            logger.info("Pack %s already installed at %s", pack, dest)
        else:
            source_root = offline_cache if offline_cache is not None else self.pack_source
            content = locate_pack_content(source_root, pack)
            if content is None:
                raise PackNotFound(f"Pack {pack} not found in {source_root}", pack=pack)
            self._materialize(pack, content, dest)
            created_payload = True

        created_marker = not marker.exists()
        if created_marker:
            try:
                marker.parent.mkdir(parents=True, exist_ok=True)
                marker.write_text(pack.kind.value + "\n", encoding="utf-8")
            except OSError as e:
                if created_payload:
                    remove_tree(dest)
                raise InstallFailure(f"Could not record pack {pack} for band {feature_band}: {e}", pack=pack) from e

        logger.info(
            "Installed pack %s for band %s (payload_created=%s marker_created=%s)",
            pack,
            feature_band,
            created_payload,
            created_marker,
        )
        return PackInstallReceipt(
            pack=pack,
            feature_band=feature_band,
            created_payload=created_payload,
            created_marker=created_marker,
        )

    def _materialize(self, pack: PackInfo, content: Path, dest: Path) -> None:
        staging = new_staging_path(self.layout.staging_dir, content_name(pack))
        try:
            materialize(content, staging)
            dest.parent.mkdir(parents=True, exist_ok=True)
            os.replace(staging, dest)
        except (OSError, ValueError) as e:
            remove_tree(staging)
            raise InstallFailure(f"Could not write pack {pack} to {dest}: {e}", pack=pack) from e
        except BaseException:
            remove_tree(staging)
            raise

    def rollback_pack(self, receipt: PackInstallReceipt) -> None:
        pack = receipt.pack
        try:
            if receipt.created_marker:
                marker = self.layout.pack_marker(pack, receipt.feature_band)
                marker.unlink(missing_ok=True)
                prune_empty_parents(marker.parent, self.layout.pack_records_dir)
            if receipt.created_payload:
                dest = self.layout.pack_dir(pack)
                remove_tree(dest)
                prune_empty_parents(dest.parent, self.layout.packs_dir)
        except OSError as e:
            raise RollbackFailure(f"Could not roll back pack {pack}: {e}") from e
        logger.info("Rolled back pack %s for band %s", pack, receipt.feature_band)

    def remove_pack(self, pack: PackInfo) -> None:
        """Delete a payload and every band marker for it."""

        markers = self.layout.pack_records_dir / pack.id.value / pack.version
        remove_tree(markers)
        prune_empty_parents(markers.parent, self.layout.pack_records_dir)
        dest = self.layout.pack_dir(pack)
        remove_tree(dest)
        prune_empty_parents(dest.parent, self.layout.packs_dir)
        logger.info("Removed pack %s", pack)

    def remove_pack_marker(self, pack: PackInfo, feature_band: SdkFeatureBand) -> None:
        marker = self.layout.pack_marker(pack, feature_band)
        marker.unlink(missing_ok=True)
        prune_empty_parents(marker.parent, self.layout.pack_records_dir)
        logger.info("Removed band %s from pack %s", feature_band, pack)

    def garbage_collect(self) -> None:
        if self.garbage_collector is None:
            raise RuntimeError("No garbage collector attached to this pack installer")
        self.garbage_collector.collect()

    def _pack_info(self, pack_id: str, version: str, kind_file: Optional[Path]) -> PackInfo:
        kind = PackKind.SDK
        if kind_file is not None and kind_file.is_file():
            try:
                kind = PackKind(kind_file.read_text(encoding="utf-8").strip())
            except ValueError:
                logger.warning("Unknown pack kind in %s", kind_file)
        return PackInfo(
            id=PackId(pack_id),
            version=version,
            kind=kind,
            path=self.layout.packs_dir / pack_id / version,
        )

    def get_installed_packs(self, feature_band: SdkFeatureBand) -> List[PackInfo]:
        root = self.layout.pack_records_dir
        if not root.is_dir():
            return []
        out: List[PackInfo] = []
        for marker in sorted(root.glob(f"*/*/{feature_band.value}")):
            if not marker.is_file():
                continue
            out.append(self._pack_info(marker.parent.parent.name, marker.parent.name, marker))
        return out

    def _kind_marker(self, pack_id: str, version: str) -> Optional[Path]:
        """Any band marker of the pack; each one holds its kind."""

        markers = self.layout.pack_records_dir / pack_id / version
        if markers.is_dir():
            for m in sorted(markers.iterdir()):
                if m.is_file():
                    return m
        return None

    def get_all_installed_payloads(self) -> List[PackInfo]:
        root = self.layout.packs_dir
        if not root.is_dir():
            return []
        return [
            self._pack_info(d.parent.name, d.name, self._kind_marker(d.parent.name, d.name))
            for d in sorted(root.glob("*/*"))
            if d.is_dir()
        ]

    def get_pack_bands(self, pack: PackInfo) -> List[SdkFeatureBand]:
        markers = self.layout.pack_records_dir / pack.id.value / pack.version
        if not markers.is_dir():
            return []
        return [SdkFeatureBand(m.name) for m in sorted(markers.iterdir()) if m.is_file()]

    def download_to_offline_cache(self, pack: PackInfo, cache_path: Path, include_previews: bool) -> Optional[Path]:
        return self.offline_cache.download_pack(pack, cache_path, include_previews)
