"""Shared fixtures: a pack feed, a manifest feed and a fresh install root."""

from __future__ import annotations

from pathlib import Path

import pytest

from tests.fixture_data import (
    MANIFEST_ID,
    MANIFEST_V1,
    MANIFEST_V2,
    write_manifest,
    write_pack_archive,
    write_pack_dir,
)
from workload_installer.config import InstallerConfig
from workload_installer.installer import PackWorkloadInstaller
from workload_installer.orchestrator import WorkloadInstallOrchestrator
from workload_installer.types import ManifestId, ManifestVersion, SdkFeatureBand


@pytest.fixture
def band() -> SdkFeatureBand:
    return SdkFeatureBand("8.0.100")


@pytest.fixture
def other_band() -> SdkFeatureBand:
    return SdkFeatureBand("9.0.100")


@pytest.fixture
def feed(tmp_path) -> Path:
    root = tmp_path / "feed"
    write_pack_dir(root, "A", "1.0")
    write_pack_dir(root, "B", "2.0")
    write_pack_archive(root, "C", "1.0")
    write_pack_dir(root, "D", "1.0")
    write_pack_dir(root, "E", "1.0-preview.1")
    return root


@pytest.fixture
def manifest_source(tmp_path) -> Path:
    root = tmp_path / "manifest-feed"
    write_manifest(root, MANIFEST_V1, "1.0.0")
    write_manifest(root, MANIFEST_V2, "2.0.0")
    return root


@pytest.fixture
def config(tmp_path, feed, manifest_source) -> InstallerConfig:
    return InstallerConfig.from_mapping(
        {
            "install_root": str(tmp_path / "root"),
            "pack_source": str(feed),
            "manifest_source": str(manifest_source),
            "lock_timeout_s": 5,
        }
    )


@pytest.fixture
def make_installer(config, band, other_band):
    def _make(poisoned=(), raw_overrides=None) -> PackWorkloadInstaller:
        cfg = config
        if raw_overrides:
            cfg = InstallerConfig.from_mapping({**config.raw, **raw_overrides})
        inst = PackWorkloadInstaller(cfg, poisoned_workloads=poisoned)
        for b in (band, other_band):
            inst.install_manifest(ManifestId(MANIFEST_ID), ManifestVersion("1.0.0"), b)
        return inst

    return _make


@pytest.fixture
def installer(make_installer) -> PackWorkloadInstaller:
    return make_installer()


@pytest.fixture
def orchestrator(installer) -> WorkloadInstallOrchestrator:
    return WorkloadInstallOrchestrator(installer)
