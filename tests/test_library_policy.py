from __future__ import annotations

import ast
from pathlib import Path

# Modules that talk to a terminal on purpose.
PRINT_ALLOWED = ("src/racelink/cli.py",)

ROOT_LOGGER_CALLS = {"debug", "info", "warning", "error", "exception", "critical", "log", "basicConfig"}


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[1]


def _library_modules():
    repo_root = _repo_root()
    for path in sorted((repo_root / "src" / "racelink").rglob("*.py")):
        rel_path = path.relative_to(repo_root).as_posix()
        try:
            tree = ast.parse(path.read_text(encoding="utf-8-sig"))
        except SyntaxError as exc:  # pragma: no cover - should not happen
            raise AssertionError(f"Failed to parse {rel_path}: {exc}") from exc
        yield rel_path, tree


def _calls(tree: ast.AST):
    for node in ast.walk(tree):
        if isinstance(node, ast.Call):
            yield node


def _fail(title: str, violations: list[str]) -> None:
    if violations:
        msg = [title]
        msg.extend(f"- {item}" for item in sorted(violations))
        raise AssertionError("\n".join(msg))


def test_no_root_logger_calls() -> None:
    """Library code logs through named loggers and never configures logging itself."""
    violations: list[str] = []
    for rel_path, tree in _library_modules():
        for node in _calls(tree):
            func = node.func
            if isinstance(func, ast.Attribute) and isinstance(func.value, ast.Name) and func.value.id == "logging":
                if func.attr in ROOT_LOGGER_CALLS:
                    violations.append(f"{rel_path}:{node.lineno}: logging.{func.attr}")
            elif isinstance(func, ast.Name) and func.id == "basicConfig":
                violations.append(f"{rel_path}:{node.lineno}: basicConfig")
    _fail("Use a module logger instead of the root logger:", violations)


def test_no_prints_in_library() -> None:
    violations: list[str] = []
    for rel_path, tree in _library_modules():
        if rel_path.startswith(PRINT_ALLOWED):
            continue
        for node in _calls(tree):
            func = node.func
            name = func.id if isinstance(func, ast.Name) else None
            if isinstance(func, ast.Attribute) and isinstance(func.value, ast.Name):
                name = f"{func.value.id}.{func.attr}"
            if name in {"print", "pprint", "pprint.pprint"}:
                violations.append(f"{rel_path}:{node.lineno}: {name}()")
    _fail("print() is forbidden outside the CLI module:", violations)
