"""Analysis — source text in, execution plan (or a located parse error) out.

This is the operation the HTTP endpoint and the CLI both call.  It never
raises for bad input: parse failures, oversized sources and sources nested
too deeply come back as ``AnalysisResult(success=False, ...)`` with the error
message and location.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from loopscope.extractor import TaskRecord, extract
from loopscope.syntax import ParseError, SyntaxTree, max_depth, parse

logger = logging.getLogger(__name__)

# ── Constants ──

DEFAULT_MAX_SOURCE_CHARS = 100_000

# Rendered trees nest two containers per level (node dict, children list);
# JSON encoders recurse per container, so this stays well inside the
# interpreter's default recursion limit.
DEFAULT_MAX_NESTING_DEPTH = 200


# ── Exceptions ──


class AnalysisError(Exception):
    """Base exception for analysis errors."""


class SourceTooLargeError(AnalysisError):
    """Source text exceeds ``AnalyzerConfig.max_source_chars``."""


class NestingTooDeepError(AnalysisError):
    """Syntax tree is deeper than ``AnalyzerConfig.max_nesting_depth``."""

    def __init__(self, message: str, location: dict):
        super().__init__(message)
        self.location = location


# ── Data Classes ──


@dataclass
class AnalyzerConfig:
    """Configuration for one analysis.

    Attributes:
        max_source_chars: Longest source accepted; longer input is rejected
            without parsing.
        max_nesting_depth: Deepest syntax tree accepted; deeper input is
            rejected after parsing, before extraction.
        include_tree: Include the rendered syntax tree in ``as_dict()``.
    """

    max_source_chars: int = DEFAULT_MAX_SOURCE_CHARS
    max_nesting_depth: int = DEFAULT_MAX_NESTING_DEPTH
    include_tree: bool = True


@dataclass
class AnalysisResult:
    """Outcome of analyzing one snippet.

    Attributes:
        success: False if the source was rejected or failed to parse.
        plan: The execution plan (empty on failure).
        tree: The parsed tree (None on failure).
        error: Human-readable error message on failure.
        location: ``{"line", "column"}`` of the error, if known.
        duration_ms: Wall-clock time spent parsing and extracting.
    """

    success: bool = True
    plan: list[TaskRecord] = field(default_factory=list)
    tree: Optional[SyntaxTree] = None
    error: str = ""
    location: Optional[dict] = None
    duration_ms: float = 0.0

    def as_dict(self, include_tree: bool = True) -> dict:
        """Response body: ``{success, tree, analysis}`` or ``{success, error, location}``."""
        if not self.success:
            return {
                "success": False,
                "error": self.error,
                "location": self.location,
            }
        result: dict = {"success": True}
        if include_tree and self.tree is not None:
            result["tree"] = self.tree.to_dict()
        result["analysis"] = [record.as_dict() for record in self.plan]
        return result


# ── Analysis ──


def _check_size(source: str, config: AnalyzerConfig) -> None:
    if len(source) > config.max_source_chars:
        raise SourceTooLargeError(
            f"Source is {len(source)} characters; "
            f"the limit is {config.max_source_chars}."
        )


def _check_depth(tree: SyntaxTree, config: AnalyzerConfig) -> None:
    depth, deepest = max_depth(tree.root)
    if depth > config.max_nesting_depth:
        raise NestingTooDeepError(
            f"Source is nested too deeply ({depth} levels; "
            f"the limit is {config.max_nesting_depth}).",
            tree.location_of(deepest),
        )


def analyze_source(
    source: str, config: Optional[AnalyzerConfig] = None,
) -> AnalysisResult:
    """Parse ``source`` and extract its execution plan."""
    config = config or AnalyzerConfig()
    start = time.perf_counter()
    try:
        _check_size(source, config)
        tree = parse(source)
        _check_depth(tree, config)
    except ParseError as exc:
        logger.info("Analysis rejected, parse error: %s", exc.message)
        return AnalysisResult(
            success=False,
            error=exc.message,
            location=exc.location,
            duration_ms=(time.perf_counter() - start) * 1000,
        )
    except NestingTooDeepError as exc:
        logger.info("Analysis rejected: %s", exc)
        return AnalysisResult(
            success=False,
            error=str(exc),
            location=exc.location,
            duration_ms=(time.perf_counter() - start) * 1000,
        )
    except SourceTooLargeError as exc:
        logger.info("Analysis rejected: %s", exc)
        return AnalysisResult(
            success=False,
            error=str(exc),
            duration_ms=(time.perf_counter() - start) * 1000,
        )

    plan = extract(tree)
    elapsed = (time.perf_counter() - start) * 1000
    logger.debug("Analyzed %d chars into %d records in %.1fms", len(source), len(plan), elapsed)
    return AnalysisResult(success=True, plan=plan, tree=tree, duration_ms=elapsed)
