import json
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import requests

from thread_inspector.events import Frame
from thread_inspector.symbols import SymbolMap, SymbolResolver


USER32_SYMBOLS = {"symbols": [[0x100, 0x180, "GetMessageW"], [0x200, 0x260, "DispatchMessageW"]]}


class TestSymbolMap(unittest.TestCase):
    def test_lookup_ranges(self):
        symbol_map = SymbolMap.from_json(USER32_SYMBOLS)
        self.assertEqual(symbol_map.lookup(0x100), "GetMessageW")
        self.assertEqual(symbol_map.lookup(0x17f), "GetMessageW")
        self.assertIsNone(symbol_map.lookup(0x180))
        self.assertEqual(symbol_map.lookup(0x210), "DispatchMessageW")
        self.assertIsNone(symbol_map.lookup(0x10))


class TestSymbolResolver(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.cache = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def test_resolves_from_cache(self):
        (self.cache / "user32.json").write_text(json.dumps(USER32_SYMBOLS))
        resolver = SymbolResolver(self.cache, local_only=True)
        stack = resolver.resolve_stack([
            Frame("user32", address=0x120),
            Frame("user32", address=0x900),
            Frame("app", "Main"),
        ])
        self.assertEqual(stack[0], Frame("user32", "GetMessageW", 0x120))
        self.assertEqual(stack[1], Frame("user32", None, 0x900))
        self.assertEqual(stack[2], Frame("app", "Main"))
        self.assertEqual(resolver.resolved_count, 1)
        self.assertEqual(resolver.unresolved_count, 1)

    def test_local_only_never_downloads(self):
        resolver = SymbolResolver(self.cache, server_url="https://symbols.example", local_only=True)
        with mock.patch("thread_inspector.symbols.requests.get") as get:
            frame = resolver.resolve_frame(Frame("user32", address=0x120))
        get.assert_not_called()
        self.assertIsNone(frame.method)
        self.assertIn("No symbols available for module user32", resolver.notes)

    def test_downloads_and_caches(self):
        response = mock.Mock(status_code=200)
        response.json.return_value = USER32_SYMBOLS
        resolver = SymbolResolver(self.cache, server_url="https://symbols.example/")
        with mock.patch("thread_inspector.symbols.requests.get", return_value=response) as get:
            frame = resolver.resolve_frame(Frame("USER32.dll", address=0x210))
            resolver.resolve_frame(Frame("user32.dll", address=0x120))

        get.assert_called_once()
        self.assertEqual(get.call_args[0][0], "https://symbols.example/user32.dll.json")
        self.assertEqual(frame.method, "DispatchMessageW")
        self.assertTrue((self.cache / "user32.dll.json").is_file())

    def test_missing_on_server(self):
        response = mock.Mock(status_code=404)
        resolver = SymbolResolver(self.cache, server_url="https://symbols.example")
        with mock.patch("thread_inspector.symbols.requests.get", return_value=response):
            frame = resolver.resolve_frame(Frame("app", address=0x10))
        self.assertIsNone(frame.method)
        self.assertIn("No symbols on server for app", resolver.notes)

    def test_download_failure_is_noted(self):
        resolver = SymbolResolver(self.cache, server_url="https://symbols.example")
        error = requests.ConnectionError("offline")
        with mock.patch("thread_inspector.symbols.requests.get", side_effect=error), \
                mock.patch("thread_inspector.symbols.time.sleep"):
            frame = resolver.resolve_frame(Frame("app", address=0x10))
        self.assertIsNone(frame.method)
        self.assertTrue(any("Symbol download failed for app" in note for note in resolver.notes))


if __name__ == "__main__":
    unittest.main()
