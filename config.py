"""Simple JSON-based config store and client config loading."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Mapping, Optional

from errors import ConfigError
from models import DEFAULT_ENDPOINT, ClientConfig, grammar_for_engine

ENV_SERVER_URL = "AMIVOICE_SERVER_URL"
ENV_API_KEY = "AMIVOICE_API_KEY"
PLACEHOLDER_API_KEY = "your_api_key_here"


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "speech_stream" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_endpoint(self) -> str:
        data = self._read_all()
        return str(data.get("endpoint", DEFAULT_ENDPOINT))

    def set_endpoint(self, endpoint: str) -> None:
        self._set("endpoint", endpoint)

    def get_api_key(self) -> str:
        data = self._read_all()
        return str(data.get("api_key", ""))

    def set_api_key(self, key: str) -> None:
        self._set("api_key", key)

    def get_engine(self) -> str:
        data = self._read_all()
        return str(data.get("engine", "general"))

    def set_engine(self, engine_id: str) -> None:
        self._set("engine", engine_id)

    def get_filtering(self) -> bool:
        data = self._read_all()
        return bool(data.get("enable_filtering", True))

    def set_filtering(self, enabled: bool) -> None:
        self._set("enable_filtering", enabled)

    def _set(self, key: str, value: object) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            return json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


def load_config(
    store: JsonConfigStore,
    environ: Optional[Mapping[str, str]] = None,
    engine: Optional[str] = None,
) -> ClientConfig:
    """Build a ClientConfig, letting environment variables override the store."""
    env = os.environ if environ is None else environ
    credential = env.get(ENV_API_KEY) or store.get_api_key()
    if not credential or credential == PLACEHOLDER_API_KEY:
        raise ConfigError(f"No API key configured; set {ENV_API_KEY} or store one in the config file")
    return ClientConfig(
        endpoint=env.get(ENV_SERVER_URL) or store.get_endpoint(),
        credential=credential,
        grammar_profile=grammar_for_engine(engine or store.get_engine()),
        enable_filtering=store.get_filtering(),
    )
