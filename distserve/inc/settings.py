# distserve/inc/settings.py
from __future__ import annotations
import os
from pathlib import Path
from configobj import ConfigObj  # keeps unknown keys, preserves case, nested sections
from typing import Any, Callable, Mapping, Optional

CFG_PATH_DEFAULT = Path(os.getenv("HOME", "")) / ".config" / "distserve.ini"

STR_PREFIX = "DISTSERVE__"
INT_PREFIX = "DISTSERVE_INT__"

_INVISIBLE = {0x200B, 0x200C, 0x200D, 0xFEFF}

def _as_int(v: Any, default: int) -> int:
    try: return int(str(v).strip())
    except (TypeError, ValueError): return default

def _clean_key(k: str) -> str:
    # hand-edited INI files pick up zero-width and control characters
    return "".join(ch for ch in k if ord(ch) >= 32 and ord(ch) != 127 and ord(ch) not in _INVISIBLE).strip()

def _clean_keys(sec: dict):
    for k in list(sec.keys()):
        nk = _clean_key(k)
        if nk != k:
            sec[nk] = sec.pop(k)
        if isinstance(sec[nk], dict):
            _clean_keys(sec[nk])

class Settings:
    """
    INI file (read once, never written back) with environment overlays:
      DISTSERVE__Section__Key=val        string
      DISTSERVE_INT__Section__Key=8080   int
    Command-line overrides go through set().
    """
    def __init__(self, path: Path = CFG_PATH_DEFAULT, environ: Optional[Mapping[str, str]] = None):
        self.path = Path(path)
        if self.path.exists():
            self._cfg = ConfigObj(str(self.path), encoding="utf-8")
        else:
            self._cfg = ConfigObj(encoding="utf-8")
        _clean_keys(self._cfg)
        self._overlay(os.environ if environ is None else environ)

    def _overlay(self, environ: Mapping[str, str]):
        for name, val in environ.items():
            if name.startswith(INT_PREFIX):
                rest, value = name[len(INT_PREFIX):], _as_int(val, 0)
            elif name.startswith(STR_PREFIX):
                rest, value = name[len(STR_PREFIX):], val
            else:
                continue
            sec, _, key = rest.partition("__")
            if sec.strip() and key.strip():
                self.set(f"{sec.strip()}.{key.strip()}", value)

    def set(self, dotted: str, value: Any):
        sec, key = dotted.split(".", 1)
        self._cfg.setdefault(sec, {})
        self._cfg[sec][key] = value

    def get(self, dotted: str, default: Any=None, cast: Optional[Callable[[Any], Any]]=None) -> Any:
        """settings.get("Section.key", default, cast=int or any one-argument callable)"""
        sec, _, key = dotted.partition(".")
        val = self._cfg.get(sec, {}).get(key, default)
        if cast is None or val is None:
            return val
        if cast is int:
            return _as_int(val, default if isinstance(default, int) else 0)
        try:
            return cast(val)
        except (TypeError, ValueError):
            return default

def config_path_from_env() -> Path:
    override = os.getenv("DISTSERVE_CONFIG")
    return Path(override) if override else CFG_PATH_DEFAULT

def load_settings(path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> Settings:
    return Settings(path or config_path_from_env(), environ=environ)
