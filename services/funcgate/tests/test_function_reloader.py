import os
from unittest.mock import MagicMock, patch

from services.funcgate.config import GatewayConfig
from services.funcgate.services.config_reloader import ConfigReloader, FunctionTreeWatcher
from services.funcgate.services.function_registry import FunctionRegistry


def _write(root, name, source):
    path = os.path.join(str(root), name)
    with open(path, "w", encoding="utf-8") as f:
        f.write(source)
    return path


def _touch_later(path):
    stat = os.stat(path)
    os.utime(path, (stat.st_atime, stat.st_mtime + 5))


class TestFunctionTreeWatcher:
    def test_first_check_records_snapshot(self, tmp_path):
        _write(tmp_path, "a.py", "def handler():\n    return 1\n")
        watcher = FunctionTreeWatcher(FunctionRegistry(str(tmp_path)))

        assert watcher.has_changed() is False
        assert watcher.has_changed() is False

    def test_detects_modified_added_and_removed_files(self, tmp_path):
        path = _write(tmp_path, "a.py", "def handler():\n    return 1\n")
        watcher = FunctionTreeWatcher(FunctionRegistry(str(tmp_path)))
        watcher.update_snapshot()

        _touch_later(path)
        assert watcher.has_changed() is True

        _write(tmp_path, "b.py", "def handler():\n    return 2\n")
        assert watcher.has_changed() is True

        os.remove(path)
        assert watcher.has_changed() is True
        assert watcher.has_changed() is False

    def test_scan_error_is_not_a_change(self):
        registry = MagicMock()
        registry.snapshot.side_effect = OSError("gone")
        watcher = FunctionTreeWatcher(registry)

        assert watcher.has_changed() is False


class TestConfigReloader:
    def test_reload_on_change(self, tmp_path):
        _write(tmp_path, "a.py", "def handler():\n    return 1\n")
        registry = FunctionRegistry(str(tmp_path))
        registry.load_functions()
        reloader = ConfigReloader(registry, GatewayConfig())
        reloader.initialize()

        assert reloader.check_and_reload() is False

        _write(tmp_path, "b.py", "def handler():\n    return 2\n")
        assert reloader.check_and_reload() is True
        assert sorted(registry.definitions) == ["a", "b"]

    def test_failed_reload_keeps_table(self, tmp_path):
        _write(tmp_path, "a.py", "def handler():\n    return 1\n")
        registry = FunctionRegistry(str(tmp_path))
        registry.load_functions()
        reloader = ConfigReloader(registry, GatewayConfig())
        reloader.initialize()

        _write(tmp_path, "broken.py", "def handler(:\n")

        assert reloader.check_and_reload() is False
        assert list(registry.definitions) == ["a"]

    def test_start_is_noop_when_disabled(self, tmp_path):
        reloader = ConfigReloader(
            FunctionRegistry(str(tmp_path)), GatewayConfig(CONFIG_RELOAD_ENABLED=False)
        )

        with patch("services.funcgate.services.config_reloader.threading.Thread") as thread:
            reloader.start()

        thread.assert_not_called()

    def test_start_and_stop_thread(self, tmp_path):
        reloader = ConfigReloader(
            FunctionRegistry(str(tmp_path)),
            GatewayConfig(CONFIG_RELOAD_ENABLED=True, CONFIG_RELOAD_INTERVAL=0.5),
        )

        reloader.start()
        assert reloader._thread is not None and reloader._thread.is_alive()

        reloader.stop()
        assert reloader._thread is None

    def test_interval_has_floor(self, tmp_path):
        reloader = ConfigReloader(
            FunctionRegistry(str(tmp_path)), GatewayConfig(CONFIG_RELOAD_INTERVAL=0.01)
        )

        assert reloader._interval == 0.5
