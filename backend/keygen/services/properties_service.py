from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import Lock
from typing import Any

import nacos

from keygen.core.config import settings

logger = logging.getLogger(__name__)

_lock = Lock()
_nacos_client: Any | None = None
_overrides: dict[str, Any] | None = None


def default_properties() -> dict[str, str]:
    """Generator properties shared by every leaf key, from settings."""
    return {
        "serverList": settings.LEAF_SERVER_LIST,
        "digest": settings.LEAF_DIGEST,
        "registryCenterType": settings.LEAF_REGISTRY_CENTER_TYPE,
        "initialValue": str(settings.LEAF_INITIAL_VALUE),
        "step": str(settings.LEAF_STEP),
    }


def get_properties(leaf_key: str) -> dict[str, str]:
    """
    Build the properties for one leaf key.

    Settings defaults, then the "default" section of the overrides document,
    then the section named after the leaf key.
    """
    overrides = _get_overrides()
    props = default_properties()
    for section in (overrides.get("default"), overrides.get(leaf_key)):
        if isinstance(section, dict):
            props.update({k: str(v) for k, v in section.items() if v is not None})
    props["leafKey"] = leaf_key
    return props


def refresh_overrides() -> dict[str, Any]:
    global _overrides
    with _lock:
        _overrides = _load_from_nacos() or _load_from_file()
        return _overrides


def _get_overrides() -> dict[str, Any]:
    """
    Prefer Nacos when enabled, fallback to local file.
    """
    global _overrides
    with _lock:
        if _overrides is not None:
            return _overrides
        _overrides = _load_from_nacos() or _load_from_file()
        return _overrides


def _load_from_file() -> dict[str, Any]:
    path = Path(__file__).resolve().parents[1] / "config" / "leaf_keys.json"
    if not path.exists():
        return {}
    return json.loads(path.read_text(encoding="utf-8"))


def _get_nacos_client() -> Any | None:
    global _nacos_client
    if _nacos_client is not None:
        return _nacos_client
    if not settings.NACOS_ENABLED:
        return None
    if not settings.NACOS_SERVER_ADDR:
        return None

    _nacos_client = nacos.NacosClient(
        server_addresses=settings.NACOS_SERVER_ADDR,
        namespace=settings.NACOS_NAMESPACE or "",
        username=settings.NACOS_USERNAME,
        password=settings.NACOS_PASSWORD,
    )
    logger.info(f"Nacos client initialized: server={settings.NACOS_SERVER_ADDR}")
    return _nacos_client


def _load_from_nacos() -> dict[str, Any] | None:
    client = _get_nacos_client()
    if client is None:
        return None
    try:
        content = client.get_config(settings.NACOS_DATA_ID, settings.NACOS_GROUP)
    except Exception as e:
        logger.error(f"Failed to get config {settings.NACOS_DATA_ID}: {e}")
        return None
    if not content:
        return None
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse JSON config {settings.NACOS_DATA_ID}: {e}")
        return None
    return data if isinstance(data, dict) else None
