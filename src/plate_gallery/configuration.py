from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

_HERE = Path(__file__).resolve()
_CANDIDATE_CONFIG_PATHS = [_HERE.parent / "config/config.yaml"] + [parent / "config/config.yaml" for parent in _HERE.parents[:3]]

CONFIG_PATH = next((path for path in _CANDIDATE_CONFIG_PATHS if path.exists()), None)
if CONFIG_PATH is None:  # pragma: no cover - fail fast in broken installs
    raise FileNotFoundError("Default config.yaml could not be located; reinstall plate-gallery so its package data is present.")


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    # Pull .env into os.environ before ${oc.env:...} interpolations are resolved
    load_dotenv()
    return OmegaConf.load(CONFIG_PATH)


def get_default_config_container(resolve: bool = False) -> Dict[str, Any]:
    config = _load_default_config()
    return OmegaConf.to_container(config, resolve=resolve)  # type: ignore[return-value]


def load_config(overrides: Optional[Dict[str, Any]] = None) -> DictConfig:
    """
    Build the runtime configuration.

    Defaults come from the packaged config.yaml; ``overrides`` is merged on
    top. Struct mode is enabled so misspelled override keys raise instead of
    being silently ignored.
    """
    base = OmegaConf.create(get_default_config_container(resolve=False))
    OmegaConf.set_struct(base, True)

    merged = DictConfig(OmegaConf.merge(base, OmegaConf.create(overrides or {})))
    OmegaConf.resolve(merged)
    return merged


def allowed_buckets(storage: DictConfig) -> List[str]:
    """The default bucket followed by any extra buckets uploads may target."""
    buckets = [str(bucket) for bucket in storage.allowed_buckets]
    if storage.bucket and storage.bucket not in buckets:
        buckets.insert(0, str(storage.bucket))
    return buckets
