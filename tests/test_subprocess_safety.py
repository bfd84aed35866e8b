"""Tests that verify subprocess safety across the codebase."""

import ast
from pathlib import Path

STREAMBOT_ROOT = Path(__file__).parent.parent / "streambot"


def _find_subprocess_calls(filepath: Path):
    """Find unsafe subprocess calls in a Python file."""
    issues = []
    try:
        tree = ast.parse(filepath.read_text(), filename=str(filepath))
    except (SyntaxError, UnicodeDecodeError):
        return issues

    for node in ast.walk(tree):
        if not isinstance(node, ast.Call):
            continue
        func_name = ""
        if isinstance(node.func, ast.Attribute):
            func_name = node.func.attr
        elif isinstance(node.func, ast.Name):
            func_name = node.func.id

        if func_name in ("system", "create_subprocess_shell"):
            issues.append(f"{filepath}:{node.lineno}: shell invocation via {func_name}()")

        if func_name in ("run", "call", "Popen", "check_output", "check_call"):
            for kw in node.keywords:
                if kw.arg == "shell" and isinstance(kw.value, ast.Constant) and kw.value.value is True:
                    issues.append(f"{filepath}:{node.lineno}: subprocess with shell=True")

    return issues


def test_no_shell_execution_in_codebase():
    """Player and helper commands are argv lists, never shell strings."""
    all_issues = []
    for py_file in STREAMBOT_ROOT.rglob("*.py"):
        all_issues.extend(_find_subprocess_calls(py_file))
    assert all_issues == [], "Unsafe subprocess calls found:\n" + "\n".join(all_issues)
