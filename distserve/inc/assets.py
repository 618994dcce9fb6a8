# distserve/inc/assets.py
from __future__ import annotations
import logging
import os
from dataclasses import dataclass
from importlib.resources import files as pkg_files
from pathlib import Path
from types import MappingProxyType
from typing import FrozenSet, Iterator, Mapping, Optional

log = logging.getLogger("distserve")

BUNDLE_SUBDIR = "dist"


class AssetStoreError(RuntimeError):
    """The bundle could not be rooted; the server must not start."""


class AssetNotFound(KeyError):
    pass


@dataclass(frozen=True)
class Asset:
    path: Path
    size: int
    mtime: float

    def read(self) -> bytes:
        return self.path.read_bytes()


def _clean(path: str) -> Optional[str]:
    """Normalize a request path into a store key, or None if it can never resolve."""
    if "\x00" in path or "\\" in path:
        return None
    parts = [p for p in path.split("/") if p]
    if any(p in (".", "..") for p in parts):
        return None
    return "/".join(parts)


class AssetStore:
    """Read-only index of a bundle directory, keyed by slash-separated relative path.

    The set of servable files is fixed when the store is loaded; bytes are streamed
    from the rooted path by the file response.
    """

    def __init__(self, assets: Mapping[str, Asset], dirs: FrozenSet[str] = frozenset(), origin: str = ""):
        self._assets = MappingProxyType(dict(assets))
        self._dirs = frozenset(dirs) | {""}
        self.origin = origin

    # ---------- construction ----------
    @classmethod
    def load(cls, root, subdir: str = BUNDLE_SUBDIR) -> "AssetStore":
        base = Path(root) / subdir if subdir else Path(root)
        if not base.is_dir():
            raise AssetStoreError(f"asset bundle not found: {base} is not a directory")
        base = base.resolve()

        assets, dirs = {}, set()
        for dirpath, dirnames, filenames in os.walk(base, followlinks=False):
            here = Path(dirpath)
            rel_dir = here.relative_to(base).as_posix()
            if rel_dir != ".":
                dirs.add(rel_dir)
            for name in filenames:
                fp = here / name
                try:
                    real = fp.resolve()
                    real.relative_to(base)
                except ValueError:
                    log.warning(f"[assets] skipping {fp}: points outside the bundle")
                    continue
                if not real.is_file():
                    continue
                key = fp.relative_to(base).as_posix()
                st = real.stat()
                assets[key] = Asset(real, st.st_size, st.st_mtime)
        store = cls(assets, frozenset(dirs), origin=str(base))
        log.info(f"[assets] loaded {len(store)} files from {base}")
        return store

    @classmethod
    def load_packaged(cls, package: str = "distserve", subdir: str = BUNDLE_SUBDIR) -> "AssetStore":
        """Load the bundle shipped inside the package itself."""
        root = pkg_files(package)
        if not isinstance(root, Path):
            raise AssetStoreError(f"packaged bundle of {package} is not on the filesystem; set WEB.bundle_dir")
        return cls.load(root, subdir)

    # ---------- lookups ----------
    def resolve(self, path: str) -> Asset:
        key = _clean(path)
        if key is None or key not in self._assets:
            raise AssetNotFound(path)
        return self._assets[key]

    def is_dir(self, path: str) -> bool:
        key = _clean(path)
        return key is not None and key in self._dirs

    def __contains__(self, path) -> bool:
        key = _clean(str(path))
        return key is not None and key in self._assets

    def __len__(self) -> int:
        return len(self._assets)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._assets))
