from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Set, Tuple

from .errors import ManifestError, UnknownWorkload
from .layout import InstallLayout
from .lib.fs import remove_tree
from .manifests import ManifestResolver
from .record_store import InstallationRecordRepository
from .types import PackId, PackInfo, PackKind, SdkFeatureBand

if TYPE_CHECKING:  # pragma: no cover
    from .pack_installer import FilePackInstaller

logger = logging.getLogger(__name__)

PackKey = Tuple[str, str]


@dataclass
class GarbageCollectionResult:
    removed_packs: List[PackInfo] = field(default_factory=list)
    removed_markers: List[Tuple[PackInfo, SdkFeatureBand]] = field(default_factory=list)
    kept_packs: List[PackInfo] = field(default_factory=list)
    unresolved_bands: List[SdkFeatureBand] = field(default_factory=list)


class GarbageCollector:
    """Deletes packs that no recorded workload references in any band.

    References are computed from each band's installation records resolved
    through the manifests active for that band. When a band's workloads
    cannot be resolved (missing or broken manifest) every pack that band
    holds is kept: an unknown reference is treated as a live one.

    Must run with the install root lock held: an in-flight install has
    packs on disk and no record yet.
    """

    def __init__(
        self,
        layout: InstallLayout,
        records: InstallationRecordRepository,
        resolver: ManifestResolver,
        pack_installer: "FilePackInstaller",
    ) -> None:
        self.layout = layout
        self.records = records
        self.resolver = resolver
        self.pack_installer = pack_installer

    def referenced_packs(self) -> Tuple[Dict[PackKey, Set[SdkFeatureBand]], Set[SdkFeatureBand]]:
        referenced: Dict[PackKey, Set[SdkFeatureBand]] = {}
        unresolved: Set[SdkFeatureBand] = set()
        for band in sorted(self.records.get_feature_bands_with_records()):
            for workload_id in sorted(self.records.get_installed_workloads(band)):
                try:
                    packs = self.resolver.get_packs_for_workload(workload_id, band)
                except (UnknownWorkload, ManifestError, OSError) as e:
                    logger.warning(
                        "Cannot resolve workload %s in band %s, keeping all packs of that band: %s",
                        workload_id,
                        band,
                        e,
                    )
                    unresolved.add(band)
                    continue
                for pack in packs:
                    referenced.setdefault(pack.key, set()).add(band)
        return referenced, unresolved

    def _candidate_packs(self) -> List[PackInfo]:
        seen: Dict[PackKey, PackInfo] = {}
        for pack in self.pack_installer.get_all_installed_payloads():
            seen[pack.key] = pack
        records_root = self.layout.pack_records_dir
        if records_root.is_dir():
            for d in sorted(records_root.glob("*/*")):
                key = (d.parent.name, d.name)
                if d.is_dir() and key not in seen:
                    seen[key] = PackInfo(id=PackId(d.parent.name), version=d.name, kind=PackKind.SDK)
        return [seen[k] for k in sorted(seen)]

    def collect(self) -> GarbageCollectionResult:
        result = GarbageCollectionResult()
        referenced, unresolved = self.referenced_packs()
        result.unresolved_bands = sorted(unresolved)

        for pack in self._candidate_packs():
            bands_using = referenced.get(pack.key, set())
            kept_marker = False
            for band in self.pack_installer.get_pack_bands(pack):
                if band in bands_using or band in unresolved:
                    kept_marker = True
                    continue
                self.pack_installer.remove_pack_marker(pack, band)
                result.removed_markers.append((pack, band))

            if bands_using or kept_marker:
                result.kept_packs.append(pack)
                continue

            self.pack_installer.remove_pack(pack)
            result.removed_packs.append(pack)

        # Leftovers of installs killed mid-materialization.
        if self.layout.staging_dir.is_dir():
            for leftover in self.layout.staging_dir.iterdir():
                logger.info("Removing stale staging entry %s", leftover)
                remove_tree(leftover)

        logger.info(
            "Garbage collection finished (removed=%d kept=%d markers_removed=%d)",
            len(result.removed_packs),
            len(result.kept_packs),
            len(result.removed_markers),
        )
        return result
