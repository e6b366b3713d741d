"""
Config loader for MindMend.

config.yaml is read once and cached; every module asks get_config() for
it. String values may carry ${ENV_VAR} references, resolved after .env
is loaded, so keys stay out of the YAML. MINDMEND_CONFIG points at a
different file.
"""

import os
import re
from pathlib import Path

import yaml
from dotenv import load_dotenv

load_dotenv()

_DEFAULT_PATH = Path(__file__).parent.parent / "config.yaml"
_ENV_REF = re.compile(r"\$\{(\w+)\}")

_config: dict | None = None

# Placeholder values shipped in .env.example; treated as "not set".
_PLACEHOLDER_MARKERS = ("your-key", "your_key", "changeme")


def _expand(node):
    """Substitute ${VAR} in every string of a parsed YAML tree; unset vars become ""."""
    if isinstance(node, str):
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), ""), node)
    if isinstance(node, dict):
        return {key: _expand(value) for key, value in node.items()}
    if isinstance(node, list):
        return [_expand(item) for item in node]
    return node


def _config_path(path: Path | None) -> Path:
    if path is not None:
        return Path(path)
    override = os.environ.get("MINDMEND_CONFIG")
    return Path(override) if override else _DEFAULT_PATH


def load_config(path: Path | None = None) -> dict:
    """Parse the config file on first call; later calls return the cached dict."""
    global _config
    if _config is None:
        source = _config_path(path)
        if not source.is_file():
            raise FileNotFoundError(f"Config not found: {source}")
        _config = _expand(yaml.safe_load(source.read_text()) or {})
    return _config


def get_config() -> dict:
    return _config if _config is not None else load_config()


def reset_config():
    """Drop the cached config so the next get_config() re-reads the file."""
    global _config
    _config = None


def is_secret_set(value: str | None) -> bool:
    """True when a key is present and not one of the .env.example placeholders."""
    if not value or not value.strip():
        return False
    lowered = value.lower()
    return not any(marker in lowered for marker in _PLACEHOLDER_MARKERS)


def is_dev_mode(cfg: dict) -> bool:
    """Development mode exposes raw upstream error detail in 500 responses."""
    if os.environ.get("MINDMEND_ENV", "").lower() == "development":
        return True
    return bool(cfg.get("chat", {}).get("dev_mode", False))
