from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from .errors import ManifestError, UnknownWorkload
from .layout import InstallLayout
from .types import ManifestId, ManifestVersion, PackId, PackInfo, PackKind, SdkFeatureBand, WorkloadId


@dataclass(frozen=True)
class WorkloadDefinition:
    id: WorkloadId
    packs: Tuple[PackId, ...] = ()
    extends: Tuple[WorkloadId, ...] = ()
    description: str = ""


@dataclass(frozen=True)
class PackDefinition:
    id: PackId
    version: str
    kind: PackKind


@dataclass(frozen=True)
class WorkloadManifest:
    """The document mapping workloads to the packs that compose them.

    Layout (YAML)::

        id: example.manifest
        version: 8.0.0
        workloads:
          wasm-tools:
            description: ...
            packs: [Example.Sdk]
            extends: [base-tools]
        packs:
          Example.Sdk: {version: 8.0.0, kind: sdk}
    """

    id: ManifestId
    version: ManifestVersion
    workloads: Dict[WorkloadId, WorkloadDefinition] = field(default_factory=dict)
    packs: Dict[PackId, PackDefinition] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "WorkloadManifest":
        if not isinstance(data, dict):
            raise ManifestError("Manifest must be a mapping/dict")
        manifest_id = str(data.get("id") or "").strip()
        version = str(data.get("version") or "").strip()
        if not manifest_id or not version:
            raise ManifestError("Manifest requires 'id' and 'version'")

        packs_cfg = data.get("packs") or {}
        workloads_cfg = data.get("workloads") or {}
        if not isinstance(packs_cfg, dict):
            raise ManifestError(f"{manifest_id}: packs must be a mapping")
        if not isinstance(workloads_cfg, dict):
            raise ManifestError(f"{manifest_id}: workloads must be a mapping")

        packs: Dict[PackId, PackDefinition] = {}
        for name, obj in packs_cfg.items():
            obj = obj or {}
            if not isinstance(obj, dict):
                raise ManifestError(f"{manifest_id}: pack {name} must be a mapping with a version")
            pack_name = str(name or "").strip()
            if not pack_name:
                raise ManifestError(f"{manifest_id}: pack names must be non-empty")
            pack_version = str(obj.get("version") or "").strip()
            if not pack_version:
                raise ManifestError(f"{manifest_id}: pack {name} has no version")
            try:
                kind = PackKind(str(obj.get("kind") or PackKind.SDK.value).lower())
            except ValueError as e:
                raise ManifestError(f"{manifest_id}: pack {name} has unknown kind {obj.get('kind')!r}") from e
            packs[PackId(pack_name)] = PackDefinition(id=PackId(pack_name), version=pack_version, kind=kind)

        workloads: Dict[WorkloadId, WorkloadDefinition] = {}
        for name, obj in workloads_cfg.items():
            obj = obj or {}
            if not isinstance(obj, dict):
                raise ManifestError(f"{manifest_id}: workload {name} must be a mapping")
            pack_names = obj.get("packs") or []
            extends = obj.get("extends") or []
            if not isinstance(pack_names, list) or not isinstance(extends, list):
                raise ManifestError(f"{manifest_id}: workload {name} packs/extends must be lists")
            for p in pack_names:
                if PackId(str(p)) not in packs:
                    raise ManifestError(f"{manifest_id}: workload {name} references unknown pack {p}")
            try:
                wid = WorkloadId(str(name or ""))
                extended = tuple(WorkloadId(str(w or "")) for w in extends)
            except ValueError as e:
                raise ManifestError(f"{manifest_id}: workload ids must be non-empty ({name!r})") from e
            workloads[wid] = WorkloadDefinition(
                id=wid,
                packs=tuple(PackId(str(p)) for p in pack_names),
                extends=extended,
                description=str(obj.get("description") or ""),
            )

        return cls(
            id=ManifestId(manifest_id),
            version=ManifestVersion(version),
            workloads=workloads,
            packs=packs,
        )


def parse_manifest_text(text: str) -> WorkloadManifest:
    try:
        import yaml  # type: ignore
    except Exception as e:  # pragma: no cover
        raise RuntimeError("PyYAML required to load manifests") from e

    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ManifestError(f"Manifest is not valid YAML: {e}") from e
    return WorkloadManifest.from_mapping(data)


def load_manifest(path: Path) -> WorkloadManifest:
    return parse_manifest_text(path.read_text(encoding="utf-8"))


class ManifestResolver(Protocol):
    def get_packs_for_workload(self, workload_id: WorkloadId, feature_band: SdkFeatureBand) -> List[PackInfo]:
        ...


class InstalledManifestResolver:
    """Resolves workloads against the manifests installed for a feature band."""

    def __init__(self, layout: InstallLayout) -> None:
        self.layout = layout

    def get_manifests(self, feature_band: SdkFeatureBand) -> List[WorkloadManifest]:
        band_dir = self.layout.band_manifests_dir(feature_band)
        if not band_dir.is_dir():
            return []
        return [load_manifest(p) for p in sorted(band_dir.glob("*.yaml"))]

    def get_packs_for_workload(self, workload_id: WorkloadId, feature_band: SdkFeatureBand) -> List[PackInfo]:
        manifests = self.get_manifests(feature_band)
        return resolve_workload_packs(manifests, workload_id, self.layout)


def resolve_workload_packs(
    manifests: Sequence[WorkloadManifest],
    workload_id: WorkloadId,
    layout: Optional[InstallLayout] = None,
) -> List[PackInfo]:
    """Flatten a workload (and what it extends) into packs, in manifest order."""

    workloads: Dict[WorkloadId, WorkloadDefinition] = {}
    packs: Dict[PackId, PackDefinition] = {}
    for m in manifests:
        workloads.update(m.workloads)
        packs.update(m.packs)

    if workload_id not in workloads:
        raise UnknownWorkload(f"Workload {workload_id} is not defined by any installed manifest")

    ordered: List[PackId] = []
    visiting: List[WorkloadId] = []

    def visit(wid: WorkloadId) -> None:
        if wid in visiting:
            raise ManifestError(f"Workload extends cycle: {' -> '.join(map(str, visiting + [wid]))}")
        definition = workloads.get(wid)
        if definition is None:
            raise UnknownWorkload(f"Workload {wid} (extended by {visiting[-1]}) is not defined")
        visiting.append(wid)
        for base in definition.extends:
            visit(base)
        for pid in definition.packs:
            if pid not in ordered:
                ordered.append(pid)
        visiting.pop()

    visit(workload_id)

    out: List[PackInfo] = []
    for pid in ordered:
        d = packs[pid]
        info = PackInfo(id=d.id, version=d.version, kind=d.kind)
        if layout is not None:
            info = PackInfo(id=d.id, version=d.version, kind=d.kind, path=layout.pack_dir(info))
        out.append(info)
    return out
