from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .types import ManifestId, PackInfo, SdkFeatureBand


@dataclass(frozen=True)
class InstallLayout:
    """Directory layout of one install root.

    <root>/packs/<packId>/<version>/                       pack payload (shared)
    <root>/metadata/installed-packs/<packId>/<version>/<band>  per-band pack marker
    <root>/metadata/workloads/<band>.json                  installation records
    <root>/manifests/<band>/<manifestId>.yaml              active manifests
    <root>/.staging/                                       in-flight writes
    """

    root: Path

    @classmethod
    def from_path(cls, root: str | Path) -> "InstallLayout":
        return cls(root=Path(root).expanduser().absolute())

    @property
    def packs_dir(self) -> Path:
        return self.root / "packs"

    @property
    def metadata_dir(self) -> Path:
        return self.root / "metadata"

    @property
    def pack_records_dir(self) -> Path:
        return self.metadata_dir / "installed-packs"

    @property
    def workload_records_dir(self) -> Path:
        return self.metadata_dir / "workloads"

    @property
    def manifests_dir(self) -> Path:
        return self.root / "manifests"

    @property
    def staging_dir(self) -> Path:
        return self.root / ".staging"

    @property
    def lock_path(self) -> Path:
        return self.root / ".install.lock"

    def pack_dir(self, pack: PackInfo) -> Path:
        return self.packs_dir / pack.id.value / pack.version

    def pack_marker(self, pack: PackInfo, band: SdkFeatureBand) -> Path:
        return self.pack_records_dir / pack.id.value / pack.version / band.value

    def records_file(self, band: SdkFeatureBand) -> Path:
        return self.workload_records_dir / f"{band.value}.json"

    def band_manifests_dir(self, band: SdkFeatureBand) -> Path:
        return self.manifests_dir / band.value

    def manifest_file(self, manifest_id: ManifestId, band: SdkFeatureBand) -> Path:
        return self.band_manifests_dir(band) / f"{manifest_id.value}.yaml"
