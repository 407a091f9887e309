"""Unit tests for reconciling installed packs against installation records."""

from __future__ import annotations

from tests.fakes import pack
from workload_installer.types import WorkloadId


def _keys(packs) -> list[tuple[str, str]]:
    return sorted(p.key for p in packs)


def test_unreferenced_pack_is_removed(installer, band) -> None:
    """A pack installed for no recorded workload is deleted."""
    pi = installer.get_pack_installer()
    pi.install_pack(pack("A", "1.0"), band)
    pi.install_pack(pack("B", "2.0"), band)
    pi.install_pack(pack("D", "1.0"), band)
    installer.get_record_repository().write_record(WorkloadId("W1"), band)

    result = pi.garbage_collector.collect()

    assert _keys(result.removed_packs) == [("D", "1.0")]
    assert _keys(pi.get_installed_packs(band)) == [("A", "1.0"), ("B", "2.0")]
    assert not installer.layout.pack_dir(pack("D", "1.0")).exists()


def test_pack_referenced_in_another_band_survives(installer, band, other_band) -> None:
    """A payload used by a workload in any band is kept; stale band markers go."""
    pi = installer.get_pack_installer()
    pi.install_pack(pack("A", "1.0"), band)
    pi.install_pack(pack("A", "1.0"), other_band)
    pi.install_pack(pack("D", "1.0"), other_band)
    installer.get_record_repository().write_record(WorkloadId("W3"), other_band)

    result = pi.garbage_collector.collect()

    assert result.removed_packs == []
    assert [(p.key, b) for p, b in result.removed_markers] == [(("A", "1.0"), band)]
    assert pi.get_pack_bands(pack("A", "1.0")) == [other_band]
    assert _keys(pi.get_installed_packs(other_band)) == [("A", "1.0"), ("D", "1.0")]


def test_everything_goes_when_nothing_is_recorded(installer, band) -> None:
    """With no records every pack is unreferenced."""
    pi = installer.get_pack_installer()
    pi.install_pack(pack("A", "1.0"), band)
    pi.install_pack(pack("C", "1.0"), band)

    pi.garbage_collect()

    assert pi.get_all_installed_payloads() == []
    assert pi.get_installed_packs(band) == []


def test_band_with_unresolvable_workload_keeps_its_packs(installer, band) -> None:
    """A record the manifests cannot resolve pins every pack of its band."""
    pi = installer.get_pack_installer()
    pi.install_pack(pack("A", "1.0"), band)
    installer.get_record_repository().write_record(WorkloadId("retired-workload"), band)

    result = pi.garbage_collector.collect()

    assert result.unresolved_bands == [band]
    assert result.removed_packs == []
    assert _keys(pi.get_installed_packs(band)) == [("A", "1.0")]


def test_orphan_payload_without_marker_is_removed(installer, band) -> None:
    """A payload left by a killed install, with no marker and no record, is reclaimed."""
    pi = installer.get_pack_installer()
    pi.install_pack(pack("B", "2.0"), band)
    pi.remove_pack_marker(pack("B", "2.0"), band)

    result = pi.garbage_collector.collect()

    assert _keys(result.removed_packs) == [("B", "2.0")]


def test_stale_staging_is_cleared(installer) -> None:
    """Half-written staging directories are removed."""
    stale = installer.layout.staging_dir / "A.1.0.deadbeef"
    stale.mkdir(parents=True)
    (stale / "partial").write_text("x", encoding="utf-8")

    installer.get_pack_installer().garbage_collect()

    assert list(installer.layout.staging_dir.iterdir()) == []


def test_collection_is_idempotent(installer, band) -> None:
    """A second pass over a reconciled root removes nothing."""
    pi = installer.get_pack_installer()
    pi.install_pack(pack("A", "1.0"), band)
    pi.install_pack(pack("D", "1.0"), band)
    installer.get_record_repository().write_record(WorkloadId("W1"), band)
    pi.garbage_collector.collect()

    again = pi.garbage_collector.collect()

    assert again.removed_packs == []
    assert again.removed_markers == []
    assert _keys(again.kept_packs) == [("A", "1.0")]
