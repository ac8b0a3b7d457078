import os

import pytest

from services.funcgate.core.exceptions import (
    DefinitionError,
    MethodNotImplementedError,
    NotFoundError,
)
from services.funcgate.services.function_registry import FunctionRegistry, route_name_for


def _write(root, relative_path, source):
    path = os.path.join(str(root), relative_path)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(source)
    return path


@pytest.mark.parametrize(
    "relative_path,expected",
    [
        ("hello.py", "hello"),
        ("a/b/c.py", "a/b/c"),
        ("a/__main__.py", "a"),
        ("__main__.py", ""),
        ("a/__notfound__.py", "a:notfound"),
        ("__notfound__.py", ":notfound"),
    ],
)
def test_route_name_for(relative_path, expected):
    assert route_name_for(relative_path) == expected


def test_route_name_rejects_invalid_segments():
    with pytest.raises(DefinitionError, match="Invalid function name"):
        route_name_for("1bad/file.py")


def test_fixture_tree_loads(registry):
    definitions = registry.definitions

    assert "" in definitions
    assert "hello" in definitions
    assert "items#GET" in definitions
    assert "items#POST" in definitions
    assert "errors:notfound" in definitions
    assert all(not key.startswith("__") for key in definitions)


def test_find_definition_exact_and_method(registry):
    assert registry.find_definition("/hello/", "GET").name == "hello"
    assert registry.find_definition("/", "GET").name == ""
    assert registry.find_definition("items", "POST").method == "POST"


def test_find_definition_other_method_is_not_implemented(registry):
    with pytest.raises(MethodNotImplementedError, match='"items": DELETE Not Implemented'):
        registry.find_definition("items", "DELETE")


def test_find_definition_falls_back_to_notfound_handler(registry):
    definition = registry.find_definition("errors/deep/missing", "GET")

    assert definition.name == "errors"
    assert definition.route_key == "errors:notfound"


def test_find_definition_not_found(registry):
    with pytest.raises(NotFoundError, match='"nope" Not Found'):
        registry.find_definition("nope", "GET")


def test_duplicate_route_is_rejected(tmp_path):
    _write(tmp_path, "dup.py", "def handler():\n    return 1\n")
    _write(tmp_path, "dup/__main__.py", "def handler():\n    return 2\n")
    registry = FunctionRegistry(str(tmp_path))

    with pytest.raises(DefinitionError, match="already defined"):
        registry.load_functions()


def test_invalid_file_error_names_the_file(tmp_path):
    _write(tmp_path, "broken.py", "def helper():\n    return 1\n")
    registry = FunctionRegistry(str(tmp_path))

    with pytest.raises(DefinitionError) as exc_info:
        registry.load_functions()
    assert exc_info.value.source_path == "broken.py"


def test_ignore_patterns(tmp_path):
    _write(tmp_path, "keep.py", "def handler():\n    return 1\n")
    _write(tmp_path, "skip/me.py", "def handler():\n    return 1\n")
    _write(tmp_path, "notes.txt", "not a function")
    registry = FunctionRegistry(str(tmp_path), ignore=["skip"])

    registry.load_functions()

    assert list(registry.definitions) == ["keep"]


def test_reload_keeps_previous_table_on_error(tmp_path):
    _write(tmp_path, "ok.py", "def handler():\n    return 1\n")
    registry = FunctionRegistry(str(tmp_path))
    registry.load_functions()
    _write(tmp_path, "bad.py", "def handler(:\n")

    assert registry.reload() is False
    assert list(registry.definitions) == ["ok"]


def test_preloaded_definitions_win_and_can_not_be_overwritten(tmp_path):
    registry = FunctionRegistry(str(tmp_path))
    registry.preload("compiled.py", "def handler():\n    return 'preloaded'\n")

    registry.load_functions()
    handler = registry.load_handler(registry.find_definition("compiled", "GET"))
    assert handler() == "preloaded"

    _write(tmp_path, "compiled.py", "def handler():\n    return 'file'\n")
    with pytest.raises(DefinitionError, match="preloaded"):
        registry.load_functions()


def test_load_handler_imports_module(registry):
    handler = registry.load_handler(registry.find_definition("hello", "GET"))

    assert handler("you") == "hello you"
    assert registry.load_handler(registry.find_definition("hello", "GET")) is handler


def test_load_handler_reimports_changed_file(tmp_path):
    path = _write(tmp_path, "v.py", "def handler():\n    return 1\n")
    registry = FunctionRegistry(str(tmp_path))
    registry.load_functions()
    definition = registry.find_definition("v", "GET")
    assert registry.load_handler(definition)() == 1

    _write(tmp_path, "v.py", "def handler():\n    return 2\n")
    stat = os.stat(path)
    os.utime(path, (stat.st_atime, stat.st_mtime + 5))

    assert registry.load_handler(definition)() == 2


def test_load_handler_propagates_import_errors(tmp_path):
    _write(tmp_path, "explode.py", "raise RuntimeError('import time')\n\ndef handler():\n    return 1\n")
    registry = FunctionRegistry(str(tmp_path))
    registry.load_functions()

    with pytest.raises(RuntimeError, match="import time"):
        registry.load_handler(registry.find_definition("explode", "GET"))


def test_snapshot_tracks_files(tmp_path):
    _write(tmp_path, "a.py", "def handler():\n    return 1\n")
    registry = FunctionRegistry(str(tmp_path))

    assert list(registry.snapshot()) == ["a.py"]
