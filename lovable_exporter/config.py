"""YAML configuration: built-in defaults < config.default.yaml < user config.yaml."""

import copy
import os
from pathlib import Path

import yaml

from .log import log_debug, log_warn

APP_NAME = "lovable-exporter"
BASE_DIR = Path(__file__).resolve().parent.parent

DEFAULT_CONFIG = {
    "output": {
        "enabled": True,
        "dir": "outputs/chat_exports",
        "export_name": "lovable-chat",
    },
    "clip": {"enabled": False},
    "capture": {
        "settle_delay": 0.6,
        "stable_rounds": 3,
        "persist_debounce": 0.4,
        "scroll_margin": 50,
    },
    "storage": {"dir": "outputs/threads"},
    "browser": {
        "headless": False,
        "user_data_dir": "playwright_user_data",
        "start_url": "https://lovable.dev/",
    },
    "selectors": {
        "message": "[data-message-id]",
        "date_label": ".text-muted-foreground.font-medium",
        "user_prose": ".PromptBox_customProse__le_d3, .prose",
        "prose": ".prose",
        "status_label": "button .truncate",
        "scroll_hints": [
            '[class*="overflow-y-auto"]',
            '[class*="overflow-y-scroll"]',
            "main",
        ],
    },
}


def get_config_paths(base_dir: Path = BASE_DIR):
    """Get candidate paths for config.yaml and the folder it may live in."""
    appdata = os.environ.get("APPDATA")
    if appdata:
        appdata_dir = Path(appdata) / APP_NAME
        appdata_path = appdata_dir / "config.yaml"
    else:
        appdata_dir = None
        appdata_path = None

    return {
        "local": base_dir / "config.yaml",
        "appdata": appdata_path,
        "appdata_dir": appdata_dir,
        "default": base_dir / "config.default.yaml",
    }


def deep_merge(target: dict, source: dict) -> dict:
    for k, v in source.items():
        if k in target and isinstance(target[k], dict) and isinstance(v, dict):
            deep_merge(target[k], v)
        else:
            target[k] = v
    return target


def _normalize(d):
    if isinstance(d, dict):
        return {k: _normalize(v) for k, v in d.items()}
    if isinstance(d, list):
        return [_normalize(i) for i in d]
    if isinstance(d, str) and d.lower() in ("true", "false"):
        return d.lower() == "true"
    return d


def load_file(path) -> dict:
    if not path or not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        log_warn(f"Failed to load {path.name}: {e}")
        return {}
    if not isinstance(data, dict):
        log_warn(f"Ignoring {path.name}: expected a mapping")
        return {}
    return _normalize(data)


def resolve_path(value, base_dir: Path = BASE_DIR) -> Path:
    """Relative paths in the config are relative to the project directory."""
    path = Path(os.path.expanduser(str(value)))
    return path if path.is_absolute() else base_dir / path


def load_config(paths=None, override: dict = None) -> dict:
    """Load defaults, then config.default.yaml, then the user's config.yaml.

    The local config.yaml wins over the one under %APPDATA%.
    """
    paths = paths or get_config_paths()
    config = copy.deepcopy(DEFAULT_CONFIG)
    deep_merge(config, load_file(paths["default"]))

    if paths["local"].exists():
        log_debug(f"Using {paths['local']}")
        deep_merge(config, load_file(paths["local"]))
    elif paths["appdata"] and paths["appdata"].exists():
        log_debug(f"Using {paths['appdata']}")
        deep_merge(config, load_file(paths["appdata"]))

    if override:
        deep_merge(config, override)
    return config


def write_user_config(config: dict, paths=None) -> Path:
    paths = paths or get_config_paths()
    target_path = paths["appdata"] or paths["local"]
    target_dir = paths["appdata_dir"]
    if target_dir and not target_dir.exists():
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            log_warn(f"Error creating directory {target_dir}: {e}")
            target_path = paths["local"]
    with open(target_path, "w", encoding="utf-8") as f:
        yaml.dump(config, f, allow_unicode=True, default_flow_style=False, sort_keys=False)
    return target_path
