"""Resolve raw-address frames using per-module symbol maps."""

import bisect
import json
import time
from pathlib import Path

import requests

from thread_inspector.events import CallStack, Frame


SYMBOL_TIMEOUT_SECONDS = 15
SYMBOL_MAX_RETRIES = 3


class SymbolMap:
    """Sorted address ranges for one module. Addresses are module-relative."""

    def __init__(self, entries: list[tuple[int, int, str]]):
        self.entries = sorted(entries)
        self.starts = [entry[0] for entry in self.entries]

    @classmethod
    def from_json(cls, data: dict) -> "SymbolMap":
        entries = []
        for item in data.get("symbols", []):
            start, end, name = item
            entries.append((int(start), int(end), str(name)))
        return cls(entries)

    def lookup(self, address: int) -> str | None:
        index = bisect.bisect_right(self.starts, address) - 1
        if index < 0:
            return None
        start, end, name = self.entries[index]
        if start <= address < end:
            return name
        return None


def _module_key(module: str) -> str:
    return Path(module.replace("\\", "/")).name.lower()


class SymbolResolver:
    """
    Resolves frames that carry only an address.

    Maps are read from `cache_dir/<module>.json`. When a map is missing and
    `local_only` is false, it is downloaded from `server_url` and stored in
    the cache. Lookup failures are recorded in `notes`; the frame is left as is.
    """

    def __init__(self, cache_dir: Path, server_url: str | None = None, local_only: bool = False):
        self.cache_dir = Path(cache_dir)
        self.server_url = server_url.rstrip("/") if server_url else None
        self.local_only = local_only
        self.notes: list[str] = []
        self._maps: dict[str, SymbolMap | None] = {}
        self.resolved_count = 0
        self.unresolved_count = 0

    def _cache_path(self, key: str) -> Path:
        return self.cache_dir / f"{key}.json"

    def _read_cached(self, key: str) -> SymbolMap | None:
        path = self._cache_path(key)
        if not path.is_file():
            return None
        try:
            with open(path, "r") as f:
                return SymbolMap.from_json(json.load(f))
        except (OSError, ValueError, TypeError) as exc:
            self.notes.append(f"Symbol cache entry unreadable for {key}: {exc}")
            return None

    def _download(self, key: str) -> SymbolMap | None:
        url = f"{self.server_url}/{key}.json"
        last_error = None
        for attempt in range(SYMBOL_MAX_RETRIES):
            try:
                resp = requests.get(url, timeout=SYMBOL_TIMEOUT_SECONDS)
                if resp.status_code == 404:
                    self.notes.append(f"No symbols on server for {key}")
                    return None
                resp.raise_for_status()
                data = resp.json()
                symbol_map = SymbolMap.from_json(data)
            except (requests.RequestException, ValueError, TypeError) as exc:
                last_error = exc
                time.sleep(0.5 * (attempt + 1))
                continue

            try:
                self.cache_dir.mkdir(parents=True, exist_ok=True)
                with open(self._cache_path(key), "w") as f:
                    json.dump(data, f)
            except OSError as exc:
                self.notes.append(f"Could not cache symbols for {key}: {exc}")
            return symbol_map

        self.notes.append(f"Symbol download failed for {key}: {last_error}")
        return None

    def symbol_map(self, module: str) -> SymbolMap | None:
        key = _module_key(module)
        if key in self._maps:
            return self._maps[key]

        symbol_map = self._read_cached(key)
        if symbol_map is None and self.server_url and not self.local_only:
            symbol_map = self._download(key)
        if symbol_map is None and key:
            self.notes.append(f"No symbols available for module {key}")
        self._maps[key] = symbol_map
        return symbol_map

    def resolve_frame(self, frame: Frame) -> Frame:
        if frame.method is not None or frame.address is None or not frame.module:
            return frame
        symbol_map = self.symbol_map(frame.module)
        name = symbol_map.lookup(frame.address) if symbol_map else None
        if name is None:
            self.unresolved_count += 1
            return frame
        self.resolved_count += 1
        return Frame(module=frame.module, method=name, address=frame.address)

    def resolve_stack(self, call_stack: CallStack) -> CallStack:
        return [self.resolve_frame(frame) for frame in call_stack]
