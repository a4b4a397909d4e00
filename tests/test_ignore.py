"""Workspace ignore rules."""
from __future__ import annotations

import pytest

from agentic_coder.application.responses import LOCK_TEXT_SYMBOL
from agentic_coder.infrastructure.workspace.ignore import IgnoreController, IgnoreRule

RULES = "# private material\nsecrets/\n*.env\n!public.env\nbuild/out.txt\n"


@pytest.fixture
def controller(workspace):
    (workspace / ".coderignore").write_text(RULES, encoding="utf-8")
    return IgnoreController(str(workspace))


@pytest.mark.parametrize("path, allowed", [
    ("secrets/key.txt", False),
    ("nested/secrets/key.txt", False),
    ("docs/secrets.md", True),
    ("app/prod.env", False),
    ("public.env", True),
    ("build/out.txt", False),
    ("src/build/out.txt", True),
    (".coderignore", False),
    ("src/main.py", True),
])
def test_validate_access(controller, path, allowed):
    assert controller.validate_access(path) is allowed


def test_directory_rule_needs_a_directory(controller, workspace):
    (workspace / "secrets").write_text("a plain file", encoding="utf-8")
    assert controller.validate_access("secrets")
    assert not controller.validate_access("secrets/")


def test_absolute_paths_inside_and_outside_workspace(controller, workspace):
    assert not controller.validate_access(str(workspace / "secrets" / "a.txt"))
    assert controller.validate_access("/etc/hosts")


def test_no_ignore_file_allows_everything(workspace):
    controller = IgnoreController(str(workspace))
    assert controller.validate_access("secrets/key.txt")
    assert controller.validate_command("cat secrets/key.txt") is None
    assert controller.get_instructions() is None


def test_validate_command_reports_first_blocked_argument(controller):
    assert controller.validate_command("cat secrets/key.txt") == "secrets/key.txt"
    assert controller.validate_command("grep -n token src/app.py app/prod.env") == "app/prod.env"
    assert controller.validate_command("Get-Content -Path:x secrets/a") == "secrets/a"
    assert controller.validate_command("ls secrets") is None
    assert controller.validate_command("cat src/app.py") is None


def test_filter_paths_and_instructions(controller):
    assert controller.filter_paths(["a.py", "secrets/k", "x.env"]) == ["a.py"]
    instructions = controller.get_instructions()
    assert instructions.startswith("# .coderignore")
    assert LOCK_TEXT_SYMBOL in instructions
    assert RULES in instructions


def test_rule_parsing():
    assert IgnoreRule.parse("  # comment") is None
    assert IgnoreRule.parse("") is None
    assert IgnoreRule.parse("/") is None
    rule = IgnoreRule.parse("!/dist/")
    assert (rule.pattern, rule.negated, rule.anchored, rule.dir_only) == ("dist", True, True, True)
    assert IgnoreRule.parse("/dist").anchored
