# -------
# distserve: serves a pre-built `dist` bundle with cross-origin isolation headers,
# per-path cache policy and one access-log line per request.
# -------
from pathlib import Path
from types import SimpleNamespace
from typing import Optional

__version__ = "1.0.0"

def initialize(config_path: Optional[Path] = None, overrides: Optional[dict] = None) -> SimpleNamespace:
    """Load settings, configure logging and snapshot the bundle.

    Raises AssetStoreError when the bundle cannot be rooted and ValueError for an
    unknown cache policy; both are fatal for the caller.
    """
    from distserve.inc.settings import load_settings
    from distserve.inc.logging import configure_logging
    from distserve.inc.assets import AssetStore, BUNDLE_SUBDIR
    from distserve.inc.cache_policy import policy_for

    settings = load_settings(config_path)
    for dotted, value in (overrides or {}).items():
        if value is not None:
            settings.set(dotted, value)

    log = configure_logging(settings)

    policy = policy_for(settings.get("CACHE.policy", None))
    subdir = settings.get("WEB.bundle_subdir", BUNDLE_SUBDIR)
    bundle_dir = settings.get("WEB.bundle_dir", "")
    if bundle_dir:
        store = AssetStore.load(Path(bundle_dir).expanduser(), subdir)
    else:
        store = AssetStore.load_packaged(__name__, subdir)

    return SimpleNamespace(settings=settings, logger=log, store=store, policy=policy)
