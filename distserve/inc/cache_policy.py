# distserve/inc/cache_policy.py
# Cache-Control per request path. One policy is chosen at startup (CACHE.policy);
# the variants are never combined.
from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Tuple

SHORT_LIVED = "max-age=86400"
CONTENT_HASHED = "max-age=5184000, immutable"
ASSETS_DIR = "max-age=10368000, immutable"

ASSETS_PREFIX = "/assets"


@dataclass(frozen=True)
class CacheRule:
    predicate: Callable[[str], bool]
    directive: str
    label: str = ""


def extension_is(*exts: str) -> Callable[[str], bool]:
    wanted = frozenset(exts)
    def _match(path: str) -> bool:
        name = path.rsplit("/", 1)[-1]
        dot = name.rfind(".")
        return dot > -1 and name[dot:] in wanted
    return _match


def under_prefix(prefix: str) -> Callable[[str], bool]:
    prefix = prefix.rstrip("/")
    def _match(path: str) -> bool:
        return path == prefix or path.startswith(prefix + "/")
    return _match


class CachePolicy:
    """Ordered rules, first match wins. No match means no Cache-Control header."""

    def __init__(self, name: str, rules: Iterable[CacheRule] = ()):
        self.name = name
        self.rules: Tuple[CacheRule, ...] = tuple(rules)

    def classify(self, path: str) -> Optional[str]:
        for rule in self.rules:
            if rule.predicate(path):
                return rule.directive
        return None

    def __repr__(self):
        return f"CachePolicy({self.name!r}, rules={len(self.rules)})"


def extension_policy() -> CachePolicy:
    # .wasm has no content hash in its file name, the others do
    return CachePolicy("extension", [
        CacheRule(extension_is(".wasm"), SHORT_LIVED, ".wasm"),
        CacheRule(extension_is(".js", ".css", ".map", ".nnue", ".ttf"), CONTENT_HASHED, "hashed"),
    ])


def prefix_policy(prefix: str = ASSETS_PREFIX) -> CachePolicy:
    return CachePolicy("prefix", [CacheRule(under_prefix(prefix), ASSETS_DIR, prefix)])


def no_policy() -> CachePolicy:
    return CachePolicy("none")


POLICIES: Dict[str, Callable[[], CachePolicy]] = {
    "extension": extension_policy,
    "prefix": prefix_policy,
    "none": no_policy,
}

DEFAULT_POLICY = "extension"


def policy_for(name: Optional[str]) -> CachePolicy:
    key = (name or DEFAULT_POLICY).strip().lower()
    try:
        return POLICIES[key]()
    except KeyError:
        raise ValueError(
            f"unknown cache policy {name!r} (expected one of: {', '.join(sorted(POLICIES))})"
        ) from None
