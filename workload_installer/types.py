from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional


@dataclass(frozen=True, order=True)
class WorkloadId:
    value: str

    def __post_init__(self) -> None:
        if not self.value or not self.value.strip():
            raise ValueError("WorkloadId must be a non-empty string")

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, order=True)
class ManifestId:
    value: str

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, order=True)
class ManifestVersion:
    value: str

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, order=True)
class PackId:
    value: str

    def __str__(self) -> str:
        return self.value


_BAND_RE = re.compile(r"^(\d+)\.(\d+)\.(\d+)(?:-([0-9A-Za-z.\-]+))?$")


@dataclass(frozen=True, order=True)
class SdkFeatureBand:
    """A toolchain release line such as ``8.0.100``.

    Patch versions collapse to their hundred (``8.0.103`` -> ``8.0.100``).
    Prerelease labels keep at most two dot-separated components so that
    ``8.0.100-preview.3.1234`` and ``8.0.100-preview.3.5678`` share a band.
    """

    value: str

    @classmethod
    def parse(cls, version: str) -> "SdkFeatureBand":
        m = _BAND_RE.match(version.strip())
        if not m:
            raise ValueError(f"Not a toolchain version: {version!r}")
        major, minor, patch, label = m.groups()
        band = f"{int(major)}.{int(minor)}.{(int(patch) // 100) * 100}"
        if label:
            band += "-" + ".".join(label.split(".")[:2])
        return cls(band)

    @property
    def is_prerelease(self) -> bool:
        return "-" in self.value

    def __str__(self) -> str:
        return self.value


class PackKind(str, Enum):
    SDK = "sdk"
    FRAMEWORK = "framework"
    LIBRARY = "library"
    TEMPLATE = "template"
    TOOL = "tool"


class InstallationUnit(str, Enum):
    """Granularity of install/uninstall. Exactly one is active per installation."""

    PACKS = "packs"
    MSI = "msi"


def is_prerelease_version(version: str) -> bool:
    return "-" in version


@dataclass(frozen=True)
class PackInfo:
    """One installable artifact, content-addressed by (id, version)."""

    id: PackId
    version: str
    kind: PackKind
    path: Optional[Path] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.id.value, self.version)

    @property
    def is_prerelease(self) -> bool:
        return is_prerelease_version(self.version)

    def __str__(self) -> str:
        return f"{self.id}@{self.version}"


class RecordPolicy(str, Enum):
    """How repeated writes of the same installation record behave.

    SET: a workload is recorded at most once per band; writes are idempotent.
    MULTISET: every write adds an entry and every delete removes one; the
    workload stays installed while any entry remains.
    """

    SET = "set"
    MULTISET = "multiset"
