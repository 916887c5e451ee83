"""
Test registration, collection and selection.

Tests are plain ``async def`` functions taking a :class:`SessionContext`,
registered with the :func:`ui_test` decorator::

    @ui_test
    async def test_thing_page_header(ui):
        await ui.seed.create("things", title="Thing Title")
        await ui.page.navigate("/my-new-page")
        assert await ui.page.text_of("h1") == "My Expected Header Text"

Each test is known by its fully qualified name ``module.function``.
"""

import importlib
import importlib.util
import inspect
import sys
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Union

from ..core.exceptions import ValidationError
from ..core.logging_config import get_logger


logger = get_logger("ui_harness.registry")

_GLOB_CHARS = set("*?[")


@dataclass
class RegisteredTest:
    """One registered UI test."""

    __test__ = False

    name: str
    func: Callable
    module: str
    description: Optional[str] = None
    timeout: Optional[float] = None


_registry: Dict[str, RegisteredTest] = {}


def ui_test(func: Optional[Callable] = None, *, timeout: Optional[float] = None):
    """
    Register an async test function.

    Usable bare (``@ui_test``) or with options (``@ui_test(timeout=30)``).
    """

    def register(target: Callable) -> Callable:
        if not inspect.iscoroutinefunction(target):
            raise TypeError(f"@ui_test requires an async function, got {target!r}")

        name = f"{target.__module__}.{target.__qualname__}"
        doc = inspect.getdoc(target)
        test = RegisteredTest(
            name=name,
            func=target,
            module=target.__module__,
            description=doc.splitlines()[0] if doc else None,
            timeout=timeout,
        )
        if name in _registry:
            logger.debug(f"Re-registering test {name}")
        _registry[name] = test
        target.__ui_test__ = test
        return target

    if func is not None:
        return register(func)
    return register


def registered_tests() -> List[RegisteredTest]:
    """All registered tests, in registration order."""
    return list(_registry.values())


def clear_registry() -> None:
    _registry.clear()


def _module_name_for(path: Path, root: Path) -> str:
    relative = path.relative_to(root.parent).with_suffix("")
    parts = list(relative.parts)
    if parts[-1] == "__init__":
        parts.pop()
    return ".".join(parts)


def _import_file(path: Path, module_name: str) -> str:
    existing = sys.modules.get(module_name)
    if existing is not None and getattr(existing, "__file__", None):
        if Path(existing.__file__).resolve() == path.resolve():
            return module_name

    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ValidationError(
            f"Cannot import test file {path}",
            validation_type="collection",
        )

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        del sys.modules[module_name]
        raise ValidationError(
            f"Error importing {path}: {type(e).__name__}: {e}",
            validation_type="collection",
            violations=[str(path)],
        ) from e
    return module_name


def _import_target(target: str) -> List[str]:
    """Import a file, directory or dotted module name; return module names."""
    path = Path(target)

    if path.is_dir():
        root = path.resolve()
        modules = []
        for file_path in sorted(root.rglob("*.py")):
            if "__pycache__" in file_path.parts:
                continue
            modules.append(_import_file(file_path, _module_name_for(file_path, root)))
        return modules

    if path.is_file():
        resolved = path.resolve()
        return [_import_file(resolved, resolved.stem)]

    try:
        importlib.import_module(target)
    except ImportError as e:
        raise ValidationError(
            f"No such test file, directory or module: {target}",
            validation_type="collection",
            violations=[target],
        ) from e

    prefix = target + "."
    return [
        name for name in sys.modules if name == target or name.startswith(prefix)
    ]


def collect(paths: Iterable[Union[str, Path]]) -> List[RegisteredTest]:
    """
    Import the given test modules and return the tests they registered.

    Args:
        paths: Files, directories or dotted module names

    Returns:
        Registered tests from those modules, in registration order

    Raises:
        ValidationError: if a target cannot be found or imported
    """
    modules = set()
    for target in paths:
        modules.update(_import_target(str(target)))

    tests = [test for test in registered_tests() if test.module in modules]
    logger.info(
        f"Collected {len(tests)} tests from {len(modules)} modules",
        extra={"metadata": {"modules": sorted(modules), "test_count": len(tests)}},
    )
    return tests


class TestFilter:
    """
    Comma-separated selection expression.

    Each term is an ``fnmatch`` glob, or a substring when it has no glob
    characters. Terms starting with ``!`` exclude. A test is selected when it
    matches any include term (or there are none) and no exclude term.
    """

    __test__ = False

    def __init__(self, expression: Optional[str] = None):
        self.expression = expression
        self.includes: List[str] = []
        self.excludes: List[str] = []

        for raw in (expression or "").split(","):
            term = raw.strip()
            if not term:
                continue
            if term.startswith("!"):
                term = term[1:].strip()
                if not term:
                    raise ValidationError(
                        f"Empty exclude term in filter: {expression!r}",
                        validation_type="filter",
                    )
                self.excludes.append(term)
            else:
                self.includes.append(term)

    @staticmethod
    def _term_matches(term: str, name: str) -> bool:
        if _GLOB_CHARS & set(term):
            return fnmatchcase(name, term)
        return term in name

    def matches(self, name: str) -> bool:
        if any(self._term_matches(term, name) for term in self.excludes):
            return False
        if not self.includes:
            return True
        return any(self._term_matches(term, name) for term in self.includes)

    def apply(self, tests: Sequence[RegisteredTest]) -> List[RegisteredTest]:
        return [test for test in tests if self.matches(test.name)]
