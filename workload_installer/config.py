from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import InstallerConfigError
from .types import InstallationUnit, RecordPolicy

DEFAULT_INSTALL_ROOT = "~/.workloads"


@dataclass(frozen=True)
class InstallerConfig:
    raw: Dict[str, Any]

    @classmethod
    def from_mapping(cls, raw: Optional[Dict[str, Any]] = None) -> "InstallerConfig":
        cfg = cls(raw=dict(raw or {}))
        # Surface bad enum values at load time rather than mid-install.
        cfg.installation_unit
        cfg.record_policy
        cfg.lock_timeout_s
        return cfg

    @property
    def install_root(self) -> Path:
        return Path(str(self.raw.get("install_root") or DEFAULT_INSTALL_ROOT)).expanduser()

    @property
    def pack_source(self) -> Path:
        value = self.raw.get("pack_source")
        return Path(str(value)).expanduser() if value else self.install_root / "feed"

    @property
    def manifest_source(self) -> Path:
        value = self.raw.get("manifest_source")
        return Path(str(value)).expanduser() if value else self.install_root / "manifest-feed"

    @property
    def log_path(self) -> Optional[str]:
        value = self.raw.get("log_path")
        return str(value) if value else None

    @property
    def log_console(self) -> bool:
        return bool(self.raw.get("log_console", False))

    @property
    def installation_unit(self) -> InstallationUnit:
        value = str(self.raw.get("installation_unit") or InstallationUnit.PACKS.value).lower()
        try:
            return InstallationUnit(value)
        except ValueError as e:
            raise InstallerConfigError(
                f"installation_unit must be one of {[u.value for u in InstallationUnit]}, got {value!r}"
            ) from e

    @property
    def record_policy(self) -> RecordPolicy:
        value = str(self.raw.get("record_policy") or RecordPolicy.SET.value).lower()
        try:
            return RecordPolicy(value)
        except ValueError as e:
            raise InstallerConfigError(
                f"record_policy must be one of {[p.value for p in RecordPolicy]}, got {value!r}"
            ) from e

    @property
    def lock_timeout_s(self) -> Optional[float]:
        value = self.raw.get("lock_timeout_s")
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError) as e:
            raise InstallerConfigError(f"lock_timeout_s must be a number, got {value!r}") from e


def load_installer_config(path: str) -> InstallerConfig:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(path)

    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise InstallerConfigError("installer config must be YAML")

    try:
        import yaml  # type: ignore
    except Exception as e:
        raise RuntimeError("PyYAML is required to read the installer config") from e

    raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise InstallerConfigError(f"{p.name} must contain a mapping/object")

    return InstallerConfig.from_mapping(raw)
