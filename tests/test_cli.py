"""Tests for the loopscope CLI.

Covers: text and JSON output, --simulate traces, --from-plan replay,
stdin input, parse error exit codes, and unreadable paths.
"""

import io
import json
import textwrap

import pytest

from loopscope.cli import build_parser, format_plan, main
from loopscope.extractor import TaskRecord


# ── Fixtures ──


@pytest.fixture
def snippet(tmp_path):
    path = tmp_path / "snippet.js"
    path.write_text(
        textwrap.dedent("""\
        console.log('start');
        setTimeout(() => console.log('timeout'), 0);
        Promise.resolve().then(() => console.log('promise'));
        console.log('end');
        """)
    )
    return path


@pytest.fixture
def broken(tmp_path):
    path = tmp_path / "broken.js"
    path.write_text("let x = ;\n")
    return path


# ── Parser ──


class TestBuildParser:
    def test_defaults(self):
        args = build_parser().parse_args(["file.js"])
        assert args.source == "file.js"
        assert args.simulate is False
        assert args.json_output is False
        assert args.from_plan is False


# ── Output ──


class TestMain:
    def test_text_plan(self, snippet, capsys):
        assert main([str(snippet)]) == 0
        out = capsys.readouterr().out
        assert "Execution plan (7 records):" in out
        assert "MacroTask [Timer]" in out
        assert "async-1" in out

    def test_simulate_trace(self, snippet, capsys):
        assert main([str(snippet), "--simulate"]) == 0
        out = capsys.readouterr().out
        assert "--- Event loop trace ---" in out
        assert "Main script done. Checking queues..." in out
        assert out.index("Run microtask") < out.index("Run macrotask")

    def test_json_output(self, snippet, capsys):
        assert main([str(snippet), "--json-output", "--simulate"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["success"] is True
        assert "tree" not in data
        assert len(data["analysis"]) == 7
        assert data["trace"][0]["action"] == "start"
        assert data["trace"][-1]["action"] == "finish"

    def test_parse_error(self, broken, capsys):
        assert main([str(broken)]) == 1
        assert "Error:" in capsys.readouterr().err

    def test_parse_error_json(self, broken, capsys):
        assert main([str(broken), "--json-output"]) == 1
        data = json.loads(capsys.readouterr().out)
        assert data["success"] is False
        assert data["location"]["line"] == 1

    def test_missing_file(self, tmp_path, capsys):
        assert main([str(tmp_path / "nope.js")]) == 1
        assert "Could not read" in capsys.readouterr().err

    def test_stdin(self, monkeypatch, capsys):
        monkeypatch.setattr("sys.stdin", io.StringIO("foo();\n"))
        assert main(["-"]) == 0
        assert "foo()" in capsys.readouterr().out

    def test_max_chars(self, snippet, capsys):
        assert main([str(snippet), "--max-chars", "10"]) == 1
        assert "limit" in capsys.readouterr().err


class TestFromPlan:
    def test_replays_exported_plan(self, snippet, tmp_path, capsys):
        assert main([str(snippet), "--json-output"]) == 0
        exported = capsys.readouterr().out
        plan_path = tmp_path / "plan.json"
        plan_path.write_text(exported)

        assert main([str(plan_path), "--from-plan", "--simulate", "--json-output"]) == 0
        data = json.loads(capsys.readouterr().out)
        pushed = [
            step["task"]["args"][0]
            for step in data["trace"]
            if step["action"] == "push" and step["task"]["name"] == "console.log"
        ]
        assert pushed == ["'start'", "'end'", "'promise'", "'timeout'"]

    def test_bare_list(self, tmp_path, capsys):
        plan_path = tmp_path / "plan.json"
        plan_path.write_text(json.dumps([{"type": "CallStack", "name": "f", "line": 1}]))
        assert main([str(plan_path), "--from-plan"]) == 0
        assert "Execution plan (1 records):" in capsys.readouterr().out

    def test_invalid_plan(self, tmp_path, capsys):
        plan_path = tmp_path / "plan.json"
        plan_path.write_text("not json")
        assert main([str(plan_path), "--from-plan"]) == 1
        assert "Invalid plan JSON" in capsys.readouterr().err


class TestFormatPlan:
    def test_empty(self):
        assert format_plan([]) == "No calls found."

    def test_continuation_marker(self):
        record = TaskRecord(
            category="CallStack", name="cb", line=3,
            run_context="AsyncCallback", parent_id="async-2",
        )
        assert "<- async-2" in format_plan([record])
