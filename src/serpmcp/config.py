from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .images import DEFAULT_MIN_GENERIC_LENGTH, MAX_IMAGE_BYTES, ImagePolicy
from .tools.errors import ConfigError
from .tools.valueserp import DEFAULT_BASE_URL, DEFAULT_TIMEOUT

CONFIG_PATH = Path.home() / ".config" / "serpmcp" / "config.yml"

_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class AppConfig:
    api_key: str = ""
    base_url: str = DEFAULT_BASE_URL
    timeout: float = DEFAULT_TIMEOUT
    default_output: str = "csv"
    process_images: bool = True
    # Bare base64 strings at or under this length are treated as plain text.
    min_generic_length: int = DEFAULT_MIN_GENERIC_LENGTH
    generic_detection: bool = True
    max_image_bytes: int = MAX_IMAGE_BYTES
    log_level: str = "INFO"
    config_version: int = 1


def _validate(cfg: dict[str, Any]) -> dict[str, Any]:
    defaults = AppConfig().__dict__.copy()
    merged = {**defaults, **cfg}
    merged = {key: merged[key] for key in defaults}
    merged["api_key"] = merged["api_key"].strip() if isinstance(merged["api_key"], str) else ""
    if not isinstance(merged["base_url"], str) or not merged["base_url"].strip():
        merged["base_url"] = defaults["base_url"]
    raw_timeout = merged["timeout"]
    merged["timeout"] = (
        float(raw_timeout)
        if isinstance(raw_timeout, (int, float)) and not isinstance(raw_timeout, bool) and raw_timeout > 0
        else defaults["timeout"]
    )
    if not isinstance(merged["default_output"], str) or merged["default_output"] not in {"csv", "json"}:
        merged["default_output"] = defaults["default_output"]
    merged["process_images"] = bool(merged["process_images"])
    merged["generic_detection"] = bool(merged["generic_detection"])
    raw_mgl = merged["min_generic_length"]
    merged["min_generic_length"] = (
        int(raw_mgl) if isinstance(raw_mgl, (int, float)) and not isinstance(raw_mgl, bool) and int(raw_mgl) >= 0
        else defaults["min_generic_length"]
    )
    raw_mib = merged["max_image_bytes"]
    merged["max_image_bytes"] = (
        int(raw_mib) if isinstance(raw_mib, (int, float)) and not isinstance(raw_mib, bool) and int(raw_mib) > 0
        else defaults["max_image_bytes"]
    )
    level = str(merged["log_level"]).upper()
    merged["log_level"] = level if level in _LOG_LEVELS else defaults["log_level"]
    merged["config_version"] = defaults["config_version"]
    return merged


def _apply_env(cfg: dict[str, Any]) -> dict[str, Any]:
    env_cfg = dict(cfg)
    if os.environ.get("VALUESERP_API_KEY"):
        env_cfg["api_key"] = os.environ["VALUESERP_API_KEY"]
    if os.environ.get("VALUESERP_BASE_URL"):
        env_cfg["base_url"] = os.environ["VALUESERP_BASE_URL"]
    if os.environ.get("SERPMCP_LOG_LEVEL"):
        env_cfg["log_level"] = os.environ["SERPMCP_LOG_LEVEL"]
    return _validate(env_cfg)


def load_config(path: Path = CONFIG_PATH) -> dict[str, Any]:
    """Read the YAML config (creating it on first use) and apply env overrides.

    Environment values are layered on top of what is returned but are never
    written back to disk.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    if not path.exists():
        cfg = _validate({})
        save_config(cfg, path)
        return _apply_env(cfg)

    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    cfg = _validate(raw if isinstance(raw, dict) else {})
    if cfg != raw:
        save_config(cfg, path)
    return _apply_env(cfg)


def save_config(cfg: dict[str, Any], path: Path = CONFIG_PATH) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    validated = _validate(cfg)
    tmp_path = path.with_suffix(".tmp")
    tmp_path.write_text(yaml.safe_dump(validated, sort_keys=True), encoding="utf-8")
    tmp_path.replace(path)


def require_api_key(cfg: dict[str, Any]) -> str:
    api_key = cfg.get("api_key", "")
    if not api_key:
        raise ConfigError(
            f"VALUESERP_API_KEY environment variable (or api_key in {CONFIG_PATH}) is required"
        )
    return api_key


def image_policy(cfg: dict[str, Any]) -> ImagePolicy:
    return ImagePolicy(
        min_generic_length=cfg["min_generic_length"],
        generic_detection=cfg["generic_detection"],
        max_image_bytes=cfg["max_image_bytes"],
    )
