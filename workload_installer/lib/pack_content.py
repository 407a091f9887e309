from __future__ import annotations

import os
import shutil
import zipfile
from pathlib import Path
from typing import Optional

from ..types import PackInfo
from .fs import copy_tree, remove_tree

ARCHIVE_SUFFIXES = (".nupkg", ".zip")

# Package metadata that is not part of the installed payload.
_ARCHIVE_SKIP_PREFIXES = ("_rels/", "package/", "[Content_Types].xml")


def content_name(pack: PackInfo) -> str:
    return f"{pack.id.value}.{pack.version}"


def locate_pack_content(source_root: Path, pack: PackInfo) -> Optional[Path]:
    """Find the payload of ``pack`` under a feed or cache directory.

    A payload is either an unpacked directory ``<id>.<version>/`` or an
    archive ``<id>.<version>.nupkg`` / ``.zip``. Directories win.
    """

    name = content_name(pack)
    candidate = source_root / name
    if candidate.is_dir():
        return candidate
    for suffix in ARCHIVE_SUFFIXES:
        archive = source_root / f"{name}{suffix}"
        if archive.is_file():
            return archive
    # Feeds commonly lowercase ids.
    lowered = source_root / name.lower()
    if lowered != candidate and lowered.is_dir():
        return lowered
    return None


def materialize(content: Path, dest: Path) -> None:
    """Write a located payload into ``dest`` as a directory tree."""

    if content.is_dir():
        copy_tree(content, dest)
        return

    dest.mkdir(parents=True, exist_ok=True)
    root = dest.resolve()
    try:
        with zipfile.ZipFile(content) as zf:
            for info in zf.infolist():
                if info.filename.startswith(_ARCHIVE_SKIP_PREFIXES):
                    continue
                target = (dest / info.filename).resolve()
                if root != target and root not in target.parents:
                    raise ValueError(f"Archive entry escapes destination: {info.filename}")
                if info.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                with zf.open(info) as src, target.open("wb") as out:
                    shutil.copyfileobj(src, out)
    except zipfile.BadZipFile as e:
        raise ValueError(f"Corrupt pack archive {content}: {e}") from e


def copy_content(content: Path, dest_root: Path) -> Path:
    """Copy a payload into another feed-shaped directory, keeping its form.

    The copy lands under a partial name and is renamed into place, so an
    interrupted copy is never mistaken for a cached payload.
    """

    dest_root.mkdir(parents=True, exist_ok=True)
    out = dest_root / content.name
    partial = dest_root / f".{content.name}.partial"
    remove_tree(partial)
    if content.is_dir():
        copy_tree(content, partial)
    else:
        shutil.copy2(content, partial)
    os.replace(partial, out)
    return out
