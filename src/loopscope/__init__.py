"""loopscope — Event-loop execution-flow analysis for JavaScript snippets."""

from loopscope.syntax import ParseError, SyntaxTree, SyntaxTreeError, parse
from loopscope.extractor import (
    ExecutionContext,
    ExecutionFlowExtractor,
    TaskRecord,
    extract,
)
from loopscope.simulator import (
    EventLoopSimulator,
    NotInitializedError,
    Scenario,
    SimulatorError,
    SimulatorSnapshot,
)
from loopscope.analysis import (
    AnalysisError,
    AnalysisResult,
    AnalyzerConfig,
    NestingTooDeepError,
    SourceTooLargeError,
    analyze_source,
)

__all__ = [
    # Syntax Tree Provider
    "parse",
    "SyntaxTree",
    "SyntaxTreeError",
    "ParseError",
    # Execution-Flow Extractor
    "extract",
    "ExecutionFlowExtractor",
    "ExecutionContext",
    "TaskRecord",
    # Scheduling Simulator
    "EventLoopSimulator",
    "Scenario",
    "SimulatorSnapshot",
    "SimulatorError",
    "NotInitializedError",
    # Analysis
    "analyze_source",
    "AnalyzerConfig",
    "AnalysisResult",
    "AnalysisError",
    "SourceTooLargeError",
    "NestingTooDeepError",
]
