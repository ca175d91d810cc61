"""Run configuration: target process, stack signatures and label buckets."""

import json
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path

from thread_inspector.errors import ConfigError


SYMBOL_CACHE_ENV = "THREAD_INSPECTOR_SYMBOL_CACHE"
SYMBOL_SERVER_ENV = "THREAD_INSPECTOR_SYMBOL_SERVER"
DEFAULT_SYMBOL_CACHE = Path.home() / ".cache" / "thread-inspector" / "symbols"


@dataclass(frozen=True)
class InspectorConfig:
    """
    Signatures used to find and classify the thread of interest.

    Defaults target the Visual Studio UI thread. Every signature is a
    `module!method` string as produced by `frame_signature`.
    """

    process_name: str = "devenv.exe"
    entry_signature: str = "devenv!WinMain"
    anchor_signature: str = "msenv!CMsoCMHandler::FPushMessageLoop"
    message_wait_signatures: tuple[str, ...] = (
        "user32!GetMessageW",
        "user32!MsgWaitForMultipleObjectsEx",
    )
    process_message_signature: str = "user32!DispatchMessageW"
    idle_signature: str = "msenv!CMsoComponent::FDoIdle"
    top_n: int = 5
    symbol_cache: Path = field(default=DEFAULT_SYMBOL_CACHE)
    symbol_server: str | None = None

    def label_buckets(self) -> dict[str, str]:
        """Map activity labels to the bucket that receives blocking time."""
        buckets = {label: "message_pump_wait" for label in self.message_wait_signatures}
        buckets[self.process_message_signature] = "process_message"
        buckets[self.idle_signature] = "idle"
        return buckets


def config_from_env(config: InspectorConfig | None = None) -> InspectorConfig:
    config = config or InspectorConfig()
    cache = os.getenv(SYMBOL_CACHE_ENV)
    server = os.getenv(SYMBOL_SERVER_ENV)
    updates: dict = {}
    if cache:
        updates["symbol_cache"] = Path(cache).expanduser()
    if server:
        updates["symbol_server"] = server.rstrip("/")
    return replace(config, **updates) if updates else config


def load_config(path: Path | None) -> InspectorConfig:
    """
    Load configuration, overlaying an optional JSON file onto the defaults.

    Environment variables for the symbol cache and server are applied last.
    """
    config = InspectorConfig()
    if path is None:
        return config_from_env(config)

    try:
        with open(path, "r") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")

    known = {item.name for item in fields(InspectorConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys in {path}: {', '.join(unknown)}")

    if "message_wait_signatures" in data:
        value = data["message_wait_signatures"]
        if isinstance(value, str) or not isinstance(value, list):
            raise ConfigError("message_wait_signatures must be a list of signatures")
        data["message_wait_signatures"] = tuple(value)
    if "symbol_cache" in data:
        data["symbol_cache"] = Path(data["symbol_cache"]).expanduser()
    if "top_n" in data and not isinstance(data["top_n"], int):
        raise ConfigError("top_n must be an integer")

    return config_from_env(replace(config, **data))
