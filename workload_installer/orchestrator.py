from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .errors import (
    InstallFailure,
    ManifestInstallFailure,
    RecordWriteFailure,
    RollbackFailure,
    UnknownWorkload,
    WorkloadInstallerError,
)
from .installer import WorkloadInstaller
from .pack_installer import PackInstallReceipt
from .types import ManifestId, ManifestVersion, PackInfo, SdkFeatureBand, WorkloadId

logger = logging.getLogger(__name__)


class InstallState(str, Enum):
    PENDING = "pending"
    INSTALLING_PACKS = "installing_packs"
    RECORDING_SUCCESS = "recording_success"
    DONE = "done"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"


@dataclass
class InstallOperation:
    """State of one all-or-nothing install.

    Owned by the call that runs it; nothing about an in-flight install lives
    outside this object.
    """

    workload_ids: Tuple[WorkloadId, ...]
    feature_band: SdkFeatureBand
    offline_cache: Optional[Path] = None
    state: InstallState = InstallState.PENDING
    history: List[InstallState] = field(default_factory=lambda: [InstallState.PENDING])
    planned_packs: List[PackInfo] = field(default_factory=list)
    receipts: List[PackInstallReceipt] = field(default_factory=list)
    written_records: List[WorkloadId] = field(default_factory=list)
    rolled_back_packs: List[PackInfo] = field(default_factory=list)
    error: Optional[BaseException] = None
    rollback_error: Optional[BaseException] = None

    @property
    def installed_packs(self) -> List[PackInfo]:
        return [r.pack for r in self.receipts]

    def transition(self, state: InstallState) -> None:
        logger.info(
            "Install %s (%s): %s -> %s",
            ",".join(map(str, self.workload_ids)),
            self.feature_band,
            self.state.value,
            state.value,
        )
        self.state = state
        self.history.append(state)


def plan_packs(
    installer: WorkloadInstaller,
    workload_ids: Sequence[WorkloadId],
    band: SdkFeatureBand,
    *,
    skip_unknown: bool = False,
) -> List[PackInfo]:
    """Packs for all workloads in manifest order, each (id, version) once.

    With ``skip_unknown`` a workload the active manifests no longer define is
    logged and left out instead of raising UnknownWorkload.
    """

    resolver = installer.get_manifest_resolver()
    seen: Set[Tuple[str, str]] = set()
    out: List[PackInfo] = []
    for workload_id in workload_ids:
        try:
            packs = resolver.get_packs_for_workload(workload_id, band)
        except UnknownWorkload:
            if not skip_unknown:
                raise
            logger.warning("Workload %s is no longer defined for band %s; skipping its packs", workload_id, band)
            continue
        for pack in packs:
            if pack.key in seen:
                continue
            seen.add(pack.key)
            out.append(pack)
    return out


class WorkloadInstallOrchestrator:
    """Drives pack installs, records and rollback for whole workloads.

    Every mutating operation holds the installer's install-root lock for its
    full duration. Read-only queries do not lock.
    """

    def __init__(self, installer: WorkloadInstaller) -> None:
        self.installer = installer

    @property
    def pack_installer(self):
        return self.installer.get_pack_installer()

    @property
    def records(self):
        return self.installer.get_record_repository()

    def install_workload(
        self,
        workload_id: WorkloadId,
        feature_band: SdkFeatureBand,
        offline_cache: Optional[Path] = None,
    ) -> InstallOperation:
        return self.install_workloads([workload_id], feature_band, offline_cache)

    def install_workloads(
        self,
        workload_ids: Iterable[WorkloadId],
        feature_band: SdkFeatureBand,
        offline_cache: Optional[Path] = None,
    ) -> InstallOperation:
        """Install every pack of every workload, then record each workload.

        On success returns the operation in state DONE. Otherwise every pack
        this operation installed is rolled back, newest first, records this
        operation wrote are deleted, and the triggering error is raised with
        ``error.operation`` set (state ROLLED_BACK). If the rollback itself
        fails a RollbackFailure carrying both errors is raised (state
        ROLLBACK_FAILED) and the install root needs operator attention.
        """

        ids: List[WorkloadId] = []
        for w in workload_ids:
            if w not in ids:
                ids.append(w)
        op = InstallOperation(workload_ids=tuple(ids), feature_band=feature_band, offline_cache=offline_cache)

        with self.installer.lock():
            op.planned_packs = plan_packs(self.installer, op.workload_ids, feature_band)
            self._run(op, write_records=True)
        return op

    def _run(self, op: InstallOperation, *, write_records: bool) -> None:
        already_recorded = self.records.get_installed_workloads(op.feature_band)

        op.transition(InstallState.INSTALLING_PACKS)
        try:
            for pack in op.planned_packs:
                op.receipts.append(self.pack_installer.install_pack(pack, op.feature_band, op.offline_cache))

            op.transition(InstallState.RECORDING_SUCCESS)
            if write_records:
                for workload_id in op.workload_ids:
                    self._write_record(op, workload_id, already_recorded)
        except Exception as e:
            self._roll_back(op, e)

        op.transition(InstallState.DONE)

    def _write_record(self, op: InstallOperation, workload_id: WorkloadId, already_recorded: Set[WorkloadId]) -> None:
        try:
            added = self.records.write_record(workload_id, op.feature_band)
        except Exception:
            # A failed write may still have left an entry behind.
            if workload_id not in already_recorded:
                op.written_records.append(workload_id)
            raise
        if added:
            op.written_records.append(workload_id)

    def _roll_back(self, op: InstallOperation, error: Exception) -> None:
        failed_in = op.state
        op.error = error
        logger.error("Install failed in %s: %s; rolling back", failed_in.value, error)
        op.transition(InstallState.ROLLING_BACK)

        try:
            for receipt in reversed(op.receipts):
                self.pack_installer.rollback_pack(receipt)
                op.rolled_back_packs.append(receipt.pack)
            for workload_id in reversed(op.written_records):
                self.records.delete_record(workload_id, op.feature_band)
        except Exception as rollback_error:
            op.rollback_error = rollback_error
            op.transition(InstallState.ROLLBACK_FAILED)
            logger.exception("Rollback failed; install root may be inconsistent with its records")
            fatal = RollbackFailure(
                f"Install of {', '.join(map(str, op.workload_ids))} for band {op.feature_band} "
                "failed and could not be rolled back",
                original_error=error,
                rollback_error=rollback_error,
            )
            fatal.operation = op
            raise fatal from rollback_error

        op.transition(InstallState.ROLLED_BACK)

        if isinstance(error, WorkloadInstallerError):
            error.operation = op
            raise error
        wrapper_cls = RecordWriteFailure if failed_in is InstallState.RECORDING_SUCCESS else InstallFailure
        wrapped = wrapper_cls(str(error))
        wrapped.operation = op
        raise wrapped from error

    def uninstall_workloads(self, workload_ids: Iterable[WorkloadId], feature_band: SdkFeatureBand) -> None:
        with self.installer.lock():
            for workload_id in workload_ids:
                self.records.delete_record(workload_id, feature_band)
                logger.info("Uninstalled workload %s from band %s", workload_id, feature_band)
            self.pack_installer.garbage_collect()

    def update_manifests(
        self,
        manifests: Iterable[Tuple[ManifestId, ManifestVersion]],
        feature_band: SdkFeatureBand,
        offline_cache: Optional[Path] = None,
    ) -> Optional[InstallOperation]:
        """Publish manifests for a band, then bring its recorded workloads up to date.

        Packs the new manifests add to already-recorded workloads are
        installed as one all-or-nothing operation (no records are written);
        that operation is returned, or None when the band has no records.
        Packs the new manifests dropped are left for garbage collection.
        """

        with self.installer.lock():
            for manifest_id, version in manifests:
                try:
                    self.installer.install_manifest(manifest_id, version, feature_band, offline_cache)
                except WorkloadInstallerError:
                    raise
                except Exception as e:
                    raise ManifestInstallFailure(
                        f"Could not install manifest {manifest_id}@{version} for {feature_band}: {e}"
                    ) from e

            recorded = sorted(self.records.get_installed_workloads(feature_band))
            if not recorded:
                return None
            op = InstallOperation(workload_ids=tuple(recorded), feature_band=feature_band, offline_cache=offline_cache)
            op.planned_packs = plan_packs(self.installer, op.workload_ids, feature_band, skip_unknown=True)
            self._run(op, write_records=False)
        return op

    def garbage_collect(self) -> None:
        with self.installer.lock():
            self.pack_installer.garbage_collect()

    def download_to_offline_cache(
        self,
        workload_ids: Iterable[WorkloadId],
        feature_band: SdkFeatureBand,
        cache_path: Path,
        include_previews: bool = False,
    ) -> List[PackInfo]:
        """Stage every pack of the given workloads into ``cache_path``. Returns the packs staged."""

        staged: List[PackInfo] = []
        for pack in plan_packs(self.installer, list(workload_ids), feature_band):
            if self.pack_installer.download_to_offline_cache(pack, cache_path, include_previews) is not None:
                staged.append(pack)
        return staged

    def get_installed_workloads(self, feature_band: SdkFeatureBand) -> Set[WorkloadId]:
        return self.records.get_installed_workloads(feature_band)

    def get_installed_packs(self, feature_band: SdkFeatureBand) -> List[PackInfo]:
        return self.pack_installer.get_installed_packs(feature_band)

    def get_installed_workloads_by_band(self) -> Dict[SdkFeatureBand, Set[WorkloadId]]:
        return {band: self.records.get_installed_workloads(band) for band in self.records.get_feature_bands_with_records()}
