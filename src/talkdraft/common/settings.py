"""Settings persistence for TalkDraft.

Stores transcription and capture preferences so that they persist across launches.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
import json
import os
import sys
from pathlib import Path
from typing import Any


APP_NAME = "TalkDraft"

BACKEND_CHOICES = (
    "auto",
    "groq",
    "openai",
    "local",
    "whisper-cpp",
    "whisperkit",
    "openai-whisper",
)


def _default_config_dir() -> Path:
    # Allow tests or callers to override location
    override = os.environ.get("TALKDRAFT_SETTINGS_PATH")
    if override:
        p = Path(override).expanduser()
        # If the override looks like a file path, use it directly
        if p.suffix:
            return p
        return p / "settings.json"

    if sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support" / APP_NAME
    elif sys.platform.startswith("win"):
        base = (
            Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
            / APP_NAME
        )
    else:
        base = (
            Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
            / APP_NAME.lower()
        )
    return base / "settings.json"


@dataclass
class Settings:
    # Backend selection: auto | groq | openai | local | whisper-cpp | whisperkit | openai-whisper
    backend: str = "auto"
    # Local model name; whisper.cpp resolves ggml-<model>.bin
    model: str = "base"
    # Empty means the cloud provider's default model
    cloud_model: str = ""
    # Empty means auto-detect
    language: str = ""
    translate_to_english: bool = False
    model_path: str = ""
    # Empty keys fall back to GROQ_API_KEY / OPENAI_API_KEY
    groq_api_key: str = ""
    openai_api_key: str = ""

    # Capture
    input_device: str = ""
    chunk_interval_s: float = 15.0
    min_chunk_s: float = 0.5

    # Timeouts and retry for network transcription
    chunk_timeout_s: float = 10.0
    final_timeout_s: float = 60.0
    retry_attempts: int = 3
    retry_base_delay_s: float = 1.0

    # Storage
    data_dir: str = ""
    save_history: bool = True


def get_settings_path() -> Path:
    return _default_config_dir()


def load_settings() -> Settings:
    path = get_settings_path()
    try:
        if path.exists():
            raw = json.loads(path.read_text())
        else:
            raw = {}
    except Exception:
        raw = {}
    if not isinstance(raw, dict):
        raw = {}

    # Only keep known keys; fall back to defaults for missing/invalid entries
    defaults = asdict(Settings())
    data: dict[str, Any] = {}
    for k, v in defaults.items():
        if k in raw and type(raw[k]) is type(v):  # noqa: E721 - strict type match
            data[k] = raw[k]
        else:
            data[k] = v
    if data["backend"] not in BACKEND_CHOICES:
        data["backend"] = defaults["backend"]
    return Settings(**data)


def save_settings(s: Settings) -> None:
    path = get_settings_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(asdict(s), indent=2))
    except Exception:
        # Best-effort persistence; ignore write errors
        pass
