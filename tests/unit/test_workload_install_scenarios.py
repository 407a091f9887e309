"""End-to-end install scenarios against a real install root."""

from __future__ import annotations

import shutil

import pytest

from tests.fakes import pack
from tests.fixture_data import MANIFEST_ID, write_manifest
from workload_installer.errors import PackNotFound, RecordWriteFailure, RollbackFailure, UnknownWorkload
from workload_installer.orchestrator import InstallState, WorkloadInstallOrchestrator
from workload_installer.types import ManifestId, ManifestVersion, WorkloadId


MANIFEST_V3 = """\
id: test.manifest
version: 3.0.0
workloads:
  W1:
    packs: [A]
  W2:
    packs: [C, D]
packs:
  A: {version: "1.0", kind: sdk}
  C: {version: "1.0", kind: library}
  D: {version: "1.0", kind: tool}
  F: {version: "4.0", kind: tool}
"""


def _keys(packs) -> list[tuple[str, str]]:
    return sorted(p.key for p in packs)


def test_install_w1_installs_packs_and_records(orchestrator, installer, band) -> None:
    """W1 puts A@1.0 and B@2.0 on disk and records (W1, band)."""
    op = orchestrator.install_workload(WorkloadId("W1"), band)

    assert op.state is InstallState.DONE
    assert _keys(orchestrator.get_installed_packs(band)) == [("A", "1.0"), ("B", "2.0")]
    assert orchestrator.get_installed_workloads(band) == {WorkloadId("W1")}
    assert installer.layout.pack_dir(pack("A", "1.0")).is_dir()
    assert installer.layout.pack_dir(pack("B", "2.0")).is_dir()


def test_poisoned_w2_is_rolled_back(make_installer, band) -> None:
    """W2's record write fails, C@1.0 is removed and W2 is not recorded."""
    installer = make_installer(poisoned=["W2"])
    orchestrator = WorkloadInstallOrchestrator(installer)

    with pytest.raises(RecordWriteFailure) as excinfo:
        orchestrator.install_workload(WorkloadId("W2"), band)

    assert excinfo.value.operation.state is InstallState.ROLLED_BACK
    assert orchestrator.get_installed_packs(band) == []
    assert not installer.layout.pack_dir(pack("C", "1.0")).exists()
    assert orchestrator.get_installed_workloads(band) == set()


def test_rolled_back_install_keeps_packs_of_other_workloads(orchestrator, make_installer, band) -> None:
    """Rolling back W3 never touches A@1.0 that W1 already owns."""
    orchestrator.install_workload(WorkloadId("W1"), band)
    poisoned = WorkloadInstallOrchestrator(make_installer(poisoned=["W3"]))

    with pytest.raises(RecordWriteFailure):
        poisoned.install_workload(WorkloadId("W3"), band)

    assert _keys(orchestrator.get_installed_packs(band)) == [("A", "1.0"), ("B", "2.0")]
    assert orchestrator.get_installed_workloads(band) == {WorkloadId("W1")}


def test_rollback_failure_leaves_pack_on_disk(installer, band, monkeypatch) -> None:
    """When removing A@1.0 fails the operation is fatal and A@1.0 stays."""
    orchestrator = WorkloadInstallOrchestrator(installer)
    # B@2.0 missing from the source makes the install fail after A@1.0.
    shutil.rmtree(installer.config.pack_source / "B.2.0")

    def _refuse(path):
        raise PermissionError(f"cannot remove {path}")

    monkeypatch.setattr("workload_installer.pack_installer.remove_tree", _refuse)

    with pytest.raises(RollbackFailure) as excinfo:
        orchestrator.install_workload(WorkloadId("W1"), band)

    err = excinfo.value
    assert "B@2.0" in str(err.original_error)
    assert "cannot remove" in str(err)
    assert err.operation.state is InstallState.ROLLBACK_FAILED
    assert installer.layout.pack_dir(pack("A", "1.0")).is_dir()
    assert orchestrator.get_installed_workloads(band) == set()


def test_unknown_workload_changes_nothing(orchestrator, band) -> None:
    """A workload no manifest defines fails before any pack is touched."""
    with pytest.raises(UnknownWorkload):
        orchestrator.install_workload(WorkloadId("nope"), band)

    assert orchestrator.get_installed_packs(band) == []


def test_uninstall_collects_only_unreferenced_packs(orchestrator, band) -> None:
    """Uninstalling W3 removes D@1.0 but keeps A@1.0 shared with W1."""
    orchestrator.install_workloads([WorkloadId("W1"), WorkloadId("W3")], band)

    orchestrator.uninstall_workloads([WorkloadId("W3")], band)

    assert orchestrator.get_installed_workloads(band) == {WorkloadId("W1")}
    assert _keys(orchestrator.get_installed_packs(band)) == [("A", "1.0"), ("B", "2.0")]


def test_uninstall_in_one_band_keeps_packs_used_by_another(orchestrator, band, other_band) -> None:
    """A pack recorded in another band survives uninstall from this band."""
    orchestrator.install_workload(WorkloadId("W1"), band)
    orchestrator.install_workload(WorkloadId("W3"), other_band)

    orchestrator.uninstall_workloads([WorkloadId("W1")], band)

    assert orchestrator.get_installed_packs(band) == []
    assert _keys(orchestrator.get_installed_packs(other_band)) == [("A", "1.0"), ("D", "1.0")]
    assert orchestrator.get_installed_workloads_by_band() == {other_band: {WorkloadId("W3")}}


def test_manifest_update_then_gc_drops_packs_no_longer_referenced(orchestrator, installer, band) -> None:
    """After W1 stops needing B@2.0, garbage collection removes it."""
    orchestrator.install_workload(WorkloadId("W1"), band)

    orchestrator.update_manifests([(ManifestId(MANIFEST_ID), ManifestVersion("2.0.0"))], band)
    orchestrator.garbage_collect()

    assert _keys(orchestrator.get_installed_packs(band)) == [("A", "1.0")]
    assert installer.get_installed_manifests(band) == [(ManifestId(MANIFEST_ID), ManifestVersion("2.0.0"))]


def test_manifest_update_installs_packs_added_to_recorded_workloads(orchestrator, installer, band) -> None:
    """W2 gains D@1.0 in the new manifest; the update installs it without touching records."""
    write_manifest(installer.config.manifest_source, MANIFEST_V3, "3.0.0")
    orchestrator.install_workload(WorkloadId("W2"), band)

    op = orchestrator.update_manifests([(ManifestId(MANIFEST_ID), ManifestVersion("3.0.0"))], band)

    assert op.state is InstallState.DONE
    assert InstallState.RECORDING_SUCCESS in op.history
    assert _keys(orchestrator.get_installed_packs(band)) == [("C", "1.0"), ("D", "1.0")]
    assert installer.get_record_repository().record_count(WorkloadId("W2"), band) == 1


def test_manifest_update_skips_workloads_it_no_longer_defines(orchestrator, band) -> None:
    """A recorded W3 missing from the new manifest does not block the update."""
    orchestrator.install_workload(WorkloadId("W3"), band)

    op = orchestrator.update_manifests([(ManifestId(MANIFEST_ID), ManifestVersion("2.0.0"))], band)

    assert op.state is InstallState.DONE
    assert op.planned_packs == []
    assert orchestrator.get_installed_workloads(band) == {WorkloadId("W3")}


def test_manifest_update_rolls_back_packs_when_one_is_missing(orchestrator, installer, band) -> None:
    """If an added pack cannot be found, packs installed by the update are removed again."""
    broken = MANIFEST_V3.replace("version: 3.0.0", "version: 3.1.0").replace("packs: [C, D]", "packs: [C, D, F]")
    write_manifest(installer.config.manifest_source, broken, "3.1.0")
    orchestrator.install_workload(WorkloadId("W2"), band)

    with pytest.raises(PackNotFound) as excinfo:
        orchestrator.update_manifests([(ManifestId(MANIFEST_ID), ManifestVersion("3.1.0"))], band)

    assert excinfo.value.operation.state is InstallState.ROLLED_BACK
    assert _keys(orchestrator.get_installed_packs(band)) == [("C", "1.0")]
    assert orchestrator.get_installed_workloads(band) == {WorkloadId("W2")}


def test_offline_install_from_downloaded_cache(orchestrator, installer, band, tmp_path) -> None:
    """Packs staged into a cache install later without the feed."""
    cache = tmp_path / "cache"
    staged = orchestrator.download_to_offline_cache([WorkloadId("W3")], band, cache)
    assert _keys(staged) == [("A", "1.0"), ("D", "1.0")]
    assert orchestrator.get_installed_packs(band) == []

    for p in installer.config.pack_source.iterdir():
        if p.name.startswith(("A.", "D.")):
            shutil.rmtree(p)

    orchestrator.install_workload(WorkloadId("W3"), band, offline_cache=cache)

    assert _keys(orchestrator.get_installed_packs(band)) == [("A", "1.0"), ("D", "1.0")]


def test_reinstall_of_recorded_workload_is_idempotent(orchestrator, band) -> None:
    """Installing W1 twice leaves one record and the same packs."""
    orchestrator.install_workload(WorkloadId("W1"), band)

    op = orchestrator.install_workload(WorkloadId("W1"), band)

    assert op.written_records == []
    assert all(not r.created_payload and not r.created_marker for r in op.receipts)
    assert orchestrator.records.record_count(WorkloadId("W1"), band) == 1
