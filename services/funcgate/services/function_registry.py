"""
Function registry.

Walks the functions root, parses every function file into definitions and
keeps the resulting route table. The table is immutable and swapped as a
whole on reload, so readers never observe a partially built table.
"""

import fnmatch
import importlib.util
import logging
import os
import re
import threading
from types import MappingProxyType, ModuleType
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from services.funcgate.core.exceptions import (
    DefinitionError,
    MethodNotImplementedError,
    NotFoundError,
)
from services.funcgate.models.schema import FunctionDefinition
from services.funcgate.services.definition_parser import HTTP_METHODS, DefinitionParser

from ..config import config

logger = logging.getLogger("funcgate.function_registry")

FUNCTION_SUFFIX = ".py"
MAIN_NAME = "__main__"
NOTFOUND_NAME = "__notfound__"
NOTFOUND_SUFFIX = ":notfound"
ROUTE_NAME_RE = re.compile(r"^([A-Z][A-Z0-9_\-]*/)*[A-Z][A-Z0-9_\-]*$", re.IGNORECASE)


def route_name_for(relative_path: str) -> str:
    """
    Derive the route name for a file relative to the functions root.

    ``dir/file.py`` -> ``dir/file``, ``dir/__main__.py`` -> ``dir``,
    ``dir/__notfound__.py`` -> ``dir:notfound``.
    """
    parts = relative_path.replace(os.sep, "/").split("/")
    stem = parts[-1][: -len(FUNCTION_SUFFIX)]
    directories = parts[:-1]
    suffix = ""
    if stem == MAIN_NAME:
        name = "/".join(directories)
    elif stem == NOTFOUND_NAME:
        name = "/".join(directories)
        suffix = NOTFOUND_SUFFIX
    else:
        name = "/".join(directories + [stem])
    if name and not ROUTE_NAME_RE.match(name):
        raise DefinitionError(
            f"Invalid function name: {name} ({relative_path})\n"
            f"All path segments must be alphanumeric (or -, _) and start with a letter"
        )
    return name + suffix


def route_key(name: str, method: Optional[str]) -> str:
    return f"{name}#{method}" if method else name


class FunctionRegistry:
    def __init__(
        self,
        functions_root: Optional[str] = None,
        ignore: Optional[List[str]] = None,
        parser: Optional[DefinitionParser] = None,
    ):
        self.functions_root = functions_root or config.FUNCTIONS_ROOT
        self.ignore = list(ignore if ignore is not None else config.FUNCTIONS_IGNORE)
        self.parser = parser or DefinitionParser()
        self._table: Mapping[str, FunctionDefinition] = MappingProxyType({})
        self._preloaded: Dict[str, FunctionDefinition] = {}
        self._preloaded_sources: Dict[str, str] = {}
        self._modules: Dict[Tuple[str, float], object] = {}
        self._modules_lock = threading.Lock()

    # ===========================================
    # Loading
    # ===========================================

    @property
    def definitions(self) -> Mapping[str, FunctionDefinition]:
        return self._table

    def is_ignored(self, relative_path: str) -> bool:
        parts = relative_path.replace(os.sep, "/").split("/")
        for pattern in self.ignore:
            if fnmatch.fnmatch(relative_path, pattern):
                return True
            if any(fnmatch.fnmatch(part, pattern) for part in parts):
                return True
        return False

    def iter_function_files(self) -> Iterator[str]:
        """Yield function file paths relative to the root, sorted, ignore list applied."""
        for dirpath, dirnames, filenames in os.walk(self.functions_root):
            relative_dir = os.path.relpath(dirpath, self.functions_root)
            relative_dir = "" if relative_dir == "." else relative_dir
            dirnames[:] = sorted(
                d for d in dirnames if not self.is_ignored(os.path.join(relative_dir, d))
            )
            for filename in sorted(filenames):
                relative_path = os.path.join(relative_dir, filename)
                if not filename.endswith(FUNCTION_SUFFIX) or self.is_ignored(relative_path):
                    continue
                yield relative_path

    def snapshot(self) -> Dict[str, float]:
        """Modification times of every discovered function file."""
        result = {}
        for relative_path in self.iter_function_files():
            try:
                result[relative_path] = os.stat(os.path.join(self.functions_root, relative_path)).st_mtime
            except FileNotFoundError:
                continue
        return result

    def preload(self, relative_path: str, source: str) -> List[FunctionDefinition]:
        """Register definitions from in-memory source; later file loads can not overwrite them."""
        name = route_name_for(relative_path)
        definitions = self.parser.parse(name, relative_path, source)
        for definition in definitions:
            self._preloaded[definition.route_key] = definition
        self._preloaded_sources[relative_path] = source
        return definitions

    def build_table(self) -> Dict[str, FunctionDefinition]:
        """
        Parse the functions root into a new route table.

        Raises:
            DefinitionError: on the first invalid file or duplicate route
        """
        table: Dict[str, FunctionDefinition] = dict(self._preloaded)
        for relative_path in self.iter_function_files():
            full_path = os.path.join(self.functions_root, relative_path)
            with open(full_path, "r", encoding="utf-8") as f:
                source = f.read()
            try:
                name = route_name_for(relative_path)
                definitions = self.parser.parse(name, full_path, source)
            except DefinitionError as e:
                raise DefinitionError(str(e), source_path=relative_path) from e
            for definition in definitions:
                key = definition.route_key
                existing = table.get(key)
                if existing is not None:
                    if key in self._preloaded:
                        hint = "This file was preloaded as part of a compilation step, it can not be overwritten."
                    else:
                        hint = (
                            f"If declaring with [dir]/{MAIN_NAME}{FUNCTION_SUFFIX}, make sure "
                            f"[dir]{FUNCTION_SUFFIX} isn't a file in the parent directory."
                        )
                    raise DefinitionError(
                        f"Endpoint {key} ({relative_path}) was already defined in "
                        f"{existing.source_path}\n{hint}"
                    )
                table[key] = definition
        return table

    def load_functions(self) -> Mapping[str, FunctionDefinition]:
        """Build and install a new route table. Errors propagate; the old table stays."""
        table = self.build_table()
        self._table = MappingProxyType(table)
        with self._modules_lock:
            self._modules.clear()
        logger.info(
            f"Loaded {len(table)} function definitions from {self.functions_root}",
            extra={"functions_root": self.functions_root, "definition_count": len(table)},
        )
        return self._table

    def reload(self) -> bool:
        """Reload the route table, keeping the previous one if loading fails."""
        try:
            self.load_functions()
        except (DefinitionError, OSError) as e:
            logger.error(f"Function reload failed, keeping previous table: {e}")
            return False
        return True

    # ===========================================
    # Lookup
    # ===========================================

    def _get(self, table: Mapping[str, FunctionDefinition], name: str, method: str):
        definition = table.get(route_key(name, method)) or table.get(name)
        if definition is None:
            exists = name in table or any(route_key(name, m) in table for m in HTTP_METHODS)
            if exists:
                raise MethodNotImplementedError(f'"{name}": {method} Not Implemented')
        return definition

    def find_definition(self, name: str, method: str) -> FunctionDefinition:
        """
        Resolve a request path to a definition.

        Tries ``name#METHOD`` then ``name``, then ``:notfound`` handlers from
        the deepest directory up to the root.

        Raises:
            MethodNotImplementedError: name exists for other methods only
            NotFoundError: nothing matched
        """
        table = self._table
        name = name.strip("/")
        definition = self._get(table, name, method)
        if definition is None:
            subname = name
            definition = self._get(table, f"{subname}{NOTFOUND_SUFFIX}", method)
            while subname and definition is None:
                subname = subname[: max(subname.rfind("/"), 0)]
                definition = self._get(table, f"{subname}{NOTFOUND_SUFFIX}", method)
        if definition is None:
            raise NotFoundError(f'"{name}" Not Found')
        return definition

    # ===========================================
    # Modules
    # ===========================================

    def load_handler(self, definition: FunctionDefinition) -> Callable:
        """
        Import the definition's module (cached per file version) and return its invocable.

        Import failures propagate to the caller.
        """
        path = definition.source_path
        source = self._preloaded_sources.get(path)
        mtime = 0.0 if source is not None else os.stat(path).st_mtime
        cache_key = (path, mtime)
        with self._modules_lock:
            module = self._modules.get(cache_key)
            if module is None:
                module_name = "funcgate_functions." + re.sub(r"\W", "_", definition.name or "root")
                if source is not None:
                    module = ModuleType(module_name)
                    module.__file__ = path
                    exec(compile(source, path, "exec"), module.__dict__)
                else:
                    spec = importlib.util.spec_from_file_location(module_name, path)
                    if spec is None or spec.loader is None:
                        raise ImportError(f"Can not load function module from {path}")
                    module = importlib.util.module_from_spec(spec)
                    spec.loader.exec_module(module)
                self._modules[cache_key] = module
                logger.debug(f"Imported function module {path}")
        handler = getattr(module, definition.handler_name, None)
        if not callable(handler):
            raise ImportError(f'Function module {path} has no callable "{definition.handler_name}"')
        return handler
