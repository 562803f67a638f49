"""YAML configuration loader with environment variable overrides.

Configuration is layered (later layers win):

  1. ``config/config.yaml`` -- static defaults checked into the repo
  2. ``.env`` file          -- local developer overrides
  3. Environment variables  -- deploy-time values

:func:`load_config` reads the YAML file first, then deep-merges the values
resolved by :class:`~lorekeeper.config.settings.Settings` on top.
"""

from pathlib import Path

import yaml

from lorekeeper.config.settings import Settings


def load_config(path: str = "config/config.yaml", settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Args:
        path: Path to the YAML configuration file.  A missing file is treated
              as an empty document.
        settings: Settings instance to merge; a fresh one is built when omitted.

    Returns:
        Fully resolved configuration dictionary.
    """
    config_path = Path(path)
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            yaml_config = yaml.safe_load(f) or {}
    else:
        yaml_config = {}

    settings = settings or Settings()
    env_overrides = {
        "app": {
            "env": settings.app_env,
        },
        "repository": {
            "db_path": settings.db_path,
        },
        "vector_store": {
            "backend": settings.vector_store,
            "persist_dir": settings.chromadb_persist_dir,
            "collection_prefix": settings.chromadb_collection_prefix,
            "upsert_batch_size": settings.vector_upsert_batch_size,
            "search": {
                "default_limit": settings.search_default_limit,
                "min_score": settings.search_min_score,
            },
        },
        "chunking": {
            "chunk_size": settings.chunk_size,
            "overlap": settings.chunk_overlap,
            "chars_per_token": settings.chars_per_token,
        },
        "embedding": {
            "provider": settings.embedding_provider,
            "available_providers": settings.get_available_embedding_providers(),
            "batch_size": settings.embedding_batch_size,
        },
        "lifecycle": {
            "stale_after_days": settings.stale_after_days,
        },
        "events": {
            "queue_size": settings.event_queue_size,
        },
        "logging": {
            "level": settings.log_level,
        },
    }

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
