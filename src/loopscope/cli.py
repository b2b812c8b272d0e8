"""loopscope CLI — classify a JavaScript snippet's calls and replay its event loop.

Usage::

    loopscope snippet.js [options]
    cat snippet.js | loopscope - [options]

Options::

    --simulate         Replay the plan through the event-loop simulator
    --from-plan        Treat the input as a JSON plan (as printed by --json-output)
    --json-output      Print JSON instead of text
    --max-chars N      Reject sources longer than N characters
    --verbose / -v     Enable verbose logging
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from loopscope.analysis import DEFAULT_MAX_SOURCE_CHARS, AnalyzerConfig, analyze_source
from loopscope.extractor import TaskRecord
from loopscope.simulator import EventLoopSimulator, SimulatorSnapshot

# BOM signatures for UTF-16 variants
_UTF16_LE_BOM = b"\xff\xfe"
_UTF16_BE_BOM = b"\xfe\xff"


def _read_text_safe(path: Path) -> str:
    """Read a text file, handling UTF-8, UTF-16 (BOM), and latin-1 gracefully.

    Raises OSError if the file cannot be read at all.
    """
    raw = path.read_bytes()
    if raw[:2] in (_UTF16_LE_BOM, _UTF16_BE_BOM):
        return raw.decode("utf-16")
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def _read_input(source_path: str) -> str:
    if source_path == "-":
        return sys.stdin.read()
    return _read_text_safe(Path(source_path))


def _load_plan(text: str) -> list[TaskRecord]:
    """Accept either a bare list of records or a full analysis response."""
    data = json.loads(text)
    if isinstance(data, dict):
        data = data.get("analysis", [])
    return [TaskRecord.from_dict(item) for item in data]


def format_record(record: TaskRecord) -> str:
    tags = record.category
    if record.phase:
        tags += f" [{record.phase}]"
    if record.priority:
        tags += f" [{record.priority}]"
    ident = record.task_id or "-"
    parent = f" <- {record.parent_id}" if record.parent_id else ""
    return (
        f"{record.line:>4}  {tags:<28} {ident:<9} "
        f"{record.name}({', '.join(record.args)})  {record.run_context}{parent}"
    )


def format_plan(plan: list[TaskRecord]) -> str:
    if not plan:
        return "No calls found."
    lines = [f"Execution plan ({len(plan)} records):"]
    lines.extend(format_record(record) for record in plan)
    return "\n".join(lines)


def _snapshot_dict(snapshot: SimulatorSnapshot) -> dict:
    return {
        "step": snapshot.step,
        "action": snapshot.action,
        "phase": snapshot.phase,
        "task": snapshot.task.as_dict() if snapshot.task else None,
        "callStack": [r.as_dict() for r in snapshot.call_stack],
        "microQueue": [r.as_dict() for r in snapshot.micro_queue],
        "macroQueue": [r.as_dict() for r in snapshot.macro_queue],
        "log": snapshot.log,
    }


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="loopscope",
        description=(
            "loopscope — see which calls in a JavaScript snippet run now, "
            "which are microtasks and which are macrotasks, and in what order "
            "the event loop runs them."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "source",
        help="Path to a JavaScript file, or - to read stdin",
    )
    parser.add_argument(
        "--simulate",
        action="store_true",
        default=False,
        help="Replay the execution plan through the event-loop simulator",
    )
    parser.add_argument(
        "--from-plan",
        action="store_true",
        default=False,
        help="Input is a JSON execution plan rather than JavaScript source",
    )
    parser.add_argument(
        "--json-output",
        action="store_true",
        default=False,
        help="Print structured JSON instead of text",
    )
    parser.add_argument(
        "--max-chars",
        type=int,
        default=DEFAULT_MAX_SOURCE_CHARS,
        help="Reject sources longer than this many characters",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        default=False,
        help="Enable verbose logging",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point.  Returns exit code (0=success, 1=failure)."""
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")

    try:
        text = _read_input(args.source)
    except OSError as exc:
        print(f"Error: Could not read {args.source}: {exc}", file=sys.stderr)
        return 1

    output: dict = {}
    if args.from_plan:
        try:
            plan = _load_plan(text)
        except (ValueError, TypeError, AttributeError) as exc:
            print(f"Error: Invalid plan JSON: {exc}", file=sys.stderr)
            return 1
        output["analysis"] = [record.as_dict() for record in plan]
    else:
        config = AnalyzerConfig(max_source_chars=args.max_chars, include_tree=False)
        result = analyze_source(text, config)
        if not result.success:
            if args.json_output:
                print(json.dumps(result.as_dict(), indent=2))
            else:
                print(f"Error: {result.error}", file=sys.stderr)
            return 1
        plan = result.plan
        output.update(result.as_dict(include_tree=False))

    trace: list[SimulatorSnapshot] = []
    if args.simulate:
        simulator = EventLoopSimulator()
        simulator.initialize(plan)
        trace = simulator.run()
        output["trace"] = [_snapshot_dict(s) for s in trace]

    if args.json_output:
        print(json.dumps(output, indent=2))
        return 0

    print(format_plan(plan))
    if args.simulate:
        print("\n--- Event loop trace ---")
        for snapshot in trace:
            print(f"[{snapshot.step:>3}] {snapshot.log}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
