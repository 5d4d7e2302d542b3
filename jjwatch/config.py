"""Persistent JSON config helpers.

Stores the ``jj`` executable, timing knobs, and the global disable switch.
Malformed or missing config falls back to defaults key by key.
"""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass
from pathlib import Path

from platformdirs import user_config_dir

from .process import DEFAULT_TIMEOUT_MS
from .repo_watch import DEFAULT_DEBOUNCE_MS
from .summary import DEFAULT_HEAD_TEMPLATE

APP_NAME = "jjwatch"
CONFIG_FILENAME = "config.json"
DEFAULT_CONFIG_PATH = Path(user_config_dir(APP_NAME, appauthor=False)) / CONFIG_FILENAME
CONFIG_PATH = DEFAULT_CONFIG_PATH


@dataclass(frozen=True)
class TrackerOptions:
    """Runtime options for one tracker.

    ``timeout_ms`` bounds every ``jj`` invocation and ``debounce_ms`` is the
    quiet period required before a repository change triggers a query.
    """

    jj_executable: str = "jj"
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    metadata_dirname: str = ".jj"
    head_template: str = DEFAULT_HEAD_TEMPLATE
    disabled: bool = False
    color: bool = False

    def with_overrides(self, **overrides: object) -> TrackerOptions:
        """Return a copy with every non-``None`` override applied."""
        applied = {key: value for key, value in overrides.items() if value is not None}
        return dataclasses.replace(self, **applied)


def load_config() -> dict[str, object]:
    """Load the persisted JSON config object.

    Returns an empty dict when the file is missing, unreadable, malformed, or
    does not decode to a top-level JSON object.
    """
    try:
        data = json.loads(CONFIG_PATH.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def save_config(data: dict[str, object]) -> None:
    """Persist config data as pretty-printed JSON.

    Filesystem errors are ignored to keep tracking non-fatal when config
    cannot be written.
    """
    try:
        CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
        CONFIG_PATH.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
    except OSError:
        pass


def _coerce_positive_int(value: object, default: int) -> int:
    """Booleans, non-integers, and values below 1 fall back to ``default``."""
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        return default
    return value


def _coerce_nonempty_str(value: object, default: str) -> str:
    if not isinstance(value, str):
        return default
    stripped = value.strip()
    return stripped if stripped else default


def load_options() -> TrackerOptions:
    """Build ``TrackerOptions`` from persisted config with per-key fallback."""
    data = load_config()
    defaults = TrackerOptions()
    disabled = data.get("disabled")
    color = data.get("color")
    return TrackerOptions(
        jj_executable=_coerce_nonempty_str(data.get("jj_executable"), defaults.jj_executable),
        timeout_ms=_coerce_positive_int(data.get("timeout_ms"), defaults.timeout_ms),
        debounce_ms=_coerce_positive_int(data.get("debounce_ms"), defaults.debounce_ms),
        metadata_dirname=_coerce_nonempty_str(data.get("metadata_dirname"), defaults.metadata_dirname),
        head_template=_coerce_nonempty_str(data.get("head_template"), defaults.head_template),
        disabled=disabled if isinstance(disabled, bool) else defaults.disabled,
        color=color if isinstance(color, bool) else defaults.color,
    )


def save_options(options: TrackerOptions) -> None:
    """Persist ``options`` while keeping unrelated keys already on disk."""
    config = load_config()
    config.update(dataclasses.asdict(options))
    save_config(config)
