from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import ContextManager, Iterable, List, Optional, Protocol, Tuple

from .config import InstallerConfig
from .errors import UnsupportedInstallationUnit
from .garbage_collector import GarbageCollector
from .layout import InstallLayout
from .lib.lock import InstallRootLock
from .logging_utils import configure_logging
from .manifest_installer import ManifestInstaller
from .manifests import InstalledManifestResolver, ManifestResolver
from .offline_cache import OfflineCache
from .pack_installer import FilePackInstaller, PackInstaller
from .record_store import FileInstallationRecordRepository, InstallationRecordRepository
from .types import InstallationUnit, ManifestId, ManifestVersion, SdkFeatureBand

logger = logging.getLogger(__name__)


class WorkloadInstaller(Protocol):
    """One installation strategy. Selected once per process by ``get_workload_installer``."""

    def get_installation_unit(self) -> InstallationUnit:
        ...

    def get_pack_installer(self) -> PackInstaller:
        ...

    def get_record_repository(self) -> InstallationRecordRepository:
        ...

    def get_manifest_resolver(self) -> ManifestResolver:
        ...

    def install_manifest(
        self,
        manifest_id: ManifestId,
        manifest_version: ManifestVersion,
        feature_band: SdkFeatureBand,
        offline_cache: Optional[Path] = None,
    ) -> None:
        ...

    def lock(self) -> ContextManager[object]:
        ...


class PackWorkloadInstaller:
    """Pack-level installation into a user-writable install root."""

    def __init__(
        self,
        config: InstallerConfig,
        *,
        poisoned_workloads: Optional[Iterable[str]] = None,
    ) -> None:
        self.config = config
        self.layout = InstallLayout.from_path(config.install_root)
        self.records = FileInstallationRecordRepository(
            self.layout,
            policy=config.record_policy,
            poisoned_workloads=poisoned_workloads,
        )
        self.resolver = InstalledManifestResolver(self.layout)
        self.pack_installer = FilePackInstaller(
            self.layout,
            config.pack_source,
            offline_cache=OfflineCache(config.pack_source, config.manifest_source),
        )
        self.pack_installer.garbage_collector = GarbageCollector(
            self.layout, self.records, self.resolver, self.pack_installer
        )
        self.manifest_installer = ManifestInstaller(self.layout, config.manifest_source)
        self._lock = InstallRootLock(self.layout.lock_path, timeout_s=config.lock_timeout_s)

    def get_installation_unit(self) -> InstallationUnit:
        return InstallationUnit.PACKS

    def get_pack_installer(self) -> FilePackInstaller:
        return self.pack_installer

    def get_record_repository(self) -> FileInstallationRecordRepository:
        return self.records

    def get_manifest_resolver(self) -> InstalledManifestResolver:
        return self.resolver

    def install_manifest(
        self,
        manifest_id: ManifestId,
        manifest_version: ManifestVersion,
        feature_band: SdkFeatureBand,
        offline_cache: Optional[Path] = None,
    ) -> None:
        self.manifest_installer.install_manifest(manifest_id, manifest_version, feature_band, offline_cache)

    def get_installed_manifests(self, feature_band: SdkFeatureBand) -> List[Tuple[ManifestId, ManifestVersion]]:
        return self.manifest_installer.get_installed_manifests(feature_band)

    def lock(self) -> InstallRootLock:
        return self._lock


def get_workload_installer(
    config: InstallerConfig,
    *,
    poisoned_workloads: Optional[Iterable[str]] = None,
) -> WorkloadInstaller:
    if config.log_path:
        configure_logging(config.log_path, also_console=config.log_console)

    unit = config.installation_unit
    if unit is InstallationUnit.PACKS:
        logger.info("Using pack installer (install_root=%s)", config.install_root)
        return PackWorkloadInstaller(config, poisoned_workloads=poisoned_workloads)
    # Bundled-installer units need the platform's package manager.
    raise UnsupportedInstallationUnit(
        f"Installation unit {unit.value!r} is not supported on platform {sys.platform}"
    )
