"""Lightweight configuration loader for cookspace.

Reads optional settings from ~/.cookspace/config.yaml with safe defaults.

Supported keys:
- output_lines: trailing output lines shown per task (default: 5)
- show_output: show live command output at all (default: true)
- summary_delay_seconds: how long the failure summary stays up (default: 0.7)
- kill_grace_seconds: SIGTERM -> SIGKILL escalation delay (default: 3.0)
- hotkeys: mapping of abort/skip/background to single keys (default: a/s/b)
- registry_path: background process registry file
  (default: ~/.cookspace/background-processes.json)
- sessions_dir: where session checkouts live (default: ~/.cookspace/sessions)
- output_dir: per-task output logs (default: ~/.cookspace/output)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional
import yaml

_CONFIG_CACHE: Optional[Dict[str, Any]] = None


def get_state_dir() -> Path:
    return Path.home() / '.cookspace'


def _defaults() -> Dict[str, Any]:
    state = get_state_dir()
    return {
        'output_lines': 5,
        'show_output': True,
        'summary_delay_seconds': 0.7,
        'kill_grace_seconds': 3.0,
        'hotkeys': {'abort': 'a', 'skip': 's', 'background': 'b'},
        'registry_path': str(state / 'background-processes.json'),
        'sessions_dir': str(state / 'sessions'),
        'output_dir': str(state / 'output'),
    }


def get_config() -> Dict[str, Any]:
    """Load config.yaml once and cache the result."""
    global _CONFIG_CACHE
    if _CONFIG_CACHE is not None:
        return _CONFIG_CACHE

    cfg_path = get_state_dir() / 'config.yaml'
    data: Dict[str, Any] = {}
    if cfg_path.exists():
        try:
            loaded = yaml.safe_load(cfg_path.read_text())
            if isinstance(loaded, dict):
                data = loaded
        except (yaml.YAMLError, OSError):
            # Ignore malformed configs; fall back to defaults
            data = {}

    merged = {**_defaults(), **data}
    _CONFIG_CACHE = merged
    return merged


def _number(key: str, minimum: float) -> float:
    value = get_config().get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < minimum:
        return _defaults()[key]
    return value


def get_output_lines() -> int:
    value = get_config().get('output_lines')
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        return _defaults()['output_lines']
    return value


def get_show_output() -> bool:
    value = get_config().get('show_output')
    if not isinstance(value, bool):
        return _defaults()['show_output']
    return value


def get_summary_delay() -> float:
    return float(_number('summary_delay_seconds', 0))


def get_kill_grace() -> float:
    return float(_number('kill_grace_seconds', 0))


def get_hotkeys() -> Dict[str, str]:
    """
    Get control hotkeys, filling in defaults for anything missing.

    Only single-character string values are accepted; anything else
    falls back to the default key for that control.
    """
    defaults = _defaults()['hotkeys']
    configured = get_config().get('hotkeys')
    if not isinstance(configured, dict):
        return dict(defaults)

    hotkeys = {}
    for control, default_key in defaults.items():
        key = configured.get(control)
        hotkeys[control] = key if isinstance(key, str) and len(key) == 1 else default_key
    return hotkeys


def get_registry_path() -> Path:
    return Path(str(get_config().get('registry_path') or _defaults()['registry_path'])).expanduser()


def get_sessions_dir() -> Path:
    return Path(str(get_config().get('sessions_dir') or _defaults()['sessions_dir'])).expanduser()


def get_output_dir() -> Path:
    return Path(str(get_config().get('output_dir') or _defaults()['output_dir'])).expanduser()


def get_session_path(session_name: str) -> Path:
    """Get the checkout directory for a session."""
    return get_sessions_dir() / session_name
