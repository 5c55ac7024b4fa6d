from __future__ import annotations

import json
import logging
import os
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from typing import Any, TypedDict

    class DocStoreConfig(TypedDict):
        UPLOAD_DIR: str
        DATA_DIR: str
        MAX_BODY_SIZE: int
        AUTH_ENABLED: bool
        AUTH_USERNAME: str
        AUTH_PASSWORD: str
        SESSION_TIMEOUT: float
        SESSION_SWEEP_INTERVAL: float
        HOST: str
        PORT: int


logger = logging.getLogger(__name__)

DEFAULT_CONFIG: DocStoreConfig = {
    "UPLOAD_DIR": "uploads",
    "DATA_DIR": "data",
    "MAX_BODY_SIZE": 100 * 1024 * 1024,
    "AUTH_ENABLED": True,
    "AUTH_USERNAME": "admin",
    "AUTH_PASSWORD": "your-secure-password-here",
    "SESSION_TIMEOUT": 3600.0,
    "SESSION_SWEEP_INTERVAL": 300.0,
    "HOST": "0.0.0.0",
    "PORT": 3000,
}

# Keys of auth-config.json and the config keys they map to.
AUTH_CONFIG_KEYS = {
    "enabled": "AUTH_ENABLED",
    "username": "AUTH_USERNAME",
    "password": "AUTH_PASSWORD",
}


def load_auth_config(path: str) -> dict[str, Any]:
    """Reads an ``auth-config.json`` file and returns the config keys it sets.

    ``sessionTimeout`` is given in milliseconds in the file.  A missing file
    gives an empty dict; an unreadable one is logged and ignored.
    """
    if not os.path.exists(path):
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError):
        logger.warning("Could not read auth config %r, using defaults", path, exc_info=True)
        return {}

    if not isinstance(data, dict):
        logger.warning("Auth config %r is not a JSON object, using defaults", path)
        return {}

    config: dict[str, Any] = {}
    for key, config_key in AUTH_CONFIG_KEYS.items():
        if key in data:
            config[config_key] = data[key]
    if "sessionTimeout" in data:
        config["SESSION_TIMEOUT"] = data["sessionTimeout"] / 1000
    return config


def load_config(auth_config_path: str | None = None, overrides: dict[str, Any] | None = None) -> DocStoreConfig:
    """Builds the service configuration.

    Later sources win: the defaults, then the auth config file, then the
    ``PORT`` environment variable, then ``overrides``.
    """
    config: DocStoreConfig = DEFAULT_CONFIG.copy()

    if auth_config_path is not None:
        config.update(load_auth_config(auth_config_path))  # type: ignore[typeddict-item]

    port = os.environ.get("PORT")
    if port:
        try:
            config["PORT"] = int(port)
        except ValueError:
            logger.warning("Ignoring invalid PORT %r", port)

    if overrides:
        config.update(overrides)  # type: ignore[typeddict-item]

    return config
