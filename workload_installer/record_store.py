from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set

from .errors import RecordWriteFailure
from .layout import InstallLayout
from .lib.fs import atomic_write_text
from .types import RecordPolicy, SdkFeatureBand, WorkloadId

logger = logging.getLogger(__name__)

RECORD_FORMAT_VERSION = 1


class InstallationRecordRepository(Protocol):
    """Durable ledger of which workloads are installed per feature band."""

    def write_record(self, workload_id: WorkloadId, feature_band: SdkFeatureBand) -> bool:
        """Record the workload. Returns False when nothing was added."""
        ...

    def delete_record(self, workload_id: WorkloadId, feature_band: SdkFeatureBand) -> None:
        ...

    def get_installed_workloads(self, feature_band: SdkFeatureBand) -> Set[WorkloadId]:
        ...

    def get_feature_bands_with_records(self) -> Set[SdkFeatureBand]:
        ...


def _load_ledger(path: Path) -> List[str]:
    if not path.exists():
        return []
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Installation record file must be an object, got {type(data)}: {path}")
    workloads = data.get("workloads") or []
    if not isinstance(workloads, list):
        raise ValueError(f"'workloads' must be a list: {path}")
    return [str(w) for w in workloads]


def _save_ledger(path: Path, band: SdkFeatureBand, workloads: List[str]) -> None:
    payload: Dict[str, Any] = {
        "format": RECORD_FORMAT_VERSION,
        "feature_band": band.value,
        "workloads": workloads,
    }
    atomic_write_text(path, json.dumps(payload, indent=2, sort_keys=True) + "\n")


class FileInstallationRecordRepository:
    """Installation records kept as one JSON ledger per feature band.

    Each mutation rewrites the band's ledger with write-temp-then-rename,
    so a crash mid-write leaves either the old or the new ledger.

    ``poisoned_workloads`` makes ``write_record`` fail for those ids; it lets
    callers exercise the record-write failure path deterministically.
    """

    def __init__(
        self,
        layout: InstallLayout,
        *,
        policy: RecordPolicy = RecordPolicy.SET,
        poisoned_workloads: Optional[Iterable[str]] = None,
    ) -> None:
        self.layout = layout
        self.policy = policy
        self.poisoned_workloads = frozenset(poisoned_workloads or ())

    def write_record(self, workload_id: WorkloadId, feature_band: SdkFeatureBand) -> bool:
        if workload_id.value in self.poisoned_workloads:
            raise RecordWriteFailure(f"Failing workload: {workload_id}")

        path = self.layout.records_file(feature_band)
        try:
            workloads = _load_ledger(path)
            if self.policy is RecordPolicy.SET and workload_id.value in workloads:
                logger.info("Record (%s, %s) already present", workload_id, feature_band)
                return False
            workloads.append(workload_id.value)
            _save_ledger(path, feature_band, workloads)
        except (OSError, ValueError) as e:
            raise RecordWriteFailure(
                f"Could not write installation record ({workload_id}, {feature_band}): {e}"
            ) from e
        logger.info("Wrote installation record (%s, %s)", workload_id, feature_band)
        return True

    def delete_record(self, workload_id: WorkloadId, feature_band: SdkFeatureBand) -> None:
        path = self.layout.records_file(feature_band)
        try:
            workloads = _load_ledger(path)
        except (OSError, ValueError) as e:
            raise RecordWriteFailure(f"Could not read installation records for {feature_band}: {e}") from e

        if workload_id.value not in workloads:
            return

        if self.policy is RecordPolicy.SET:
            remaining = [w for w in workloads if w != workload_id.value]
        else:
            remaining = list(workloads)
            remaining.remove(workload_id.value)

        try:
            if remaining:
                _save_ledger(path, feature_band, remaining)
            else:
                path.unlink(missing_ok=True)
        except OSError as e:
            raise RecordWriteFailure(
                f"Could not delete installation record ({workload_id}, {feature_band}): {e}"
            ) from e
        logger.info("Deleted installation record (%s, %s)", workload_id, feature_band)

    def record_count(self, workload_id: WorkloadId, feature_band: SdkFeatureBand) -> int:
        return _load_ledger(self.layout.records_file(feature_band)).count(workload_id.value)

    def get_installed_workloads(self, feature_band: SdkFeatureBand) -> Set[WorkloadId]:
        return {WorkloadId(w) for w in _load_ledger(self.layout.records_file(feature_band))}

    def get_feature_bands_with_records(self) -> Set[SdkFeatureBand]:
        records_dir = self.layout.workload_records_dir
        if not records_dir.is_dir():
            return set()
        bands: Set[SdkFeatureBand] = set()
        for p in records_dir.glob("*.json"):
            band = SdkFeatureBand(p.stem)
            if _load_ledger(p):
                bands.add(band)
        return bands
