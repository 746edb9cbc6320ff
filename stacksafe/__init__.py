"""
stacksafe: Stack-Safe Recursion for Python
==========================================

stacksafe rewrites ordinary recursive functions into equivalents whose call
depth is limited by available memory instead of the interpreter's recursion
limit. Each recursive call becomes a suspension point of a generator; a small
trampoline keeps the paused calls on an explicit stack.

Core Components:
    - analysis: recursion groups and call-site classification
    - compiler: frame layouts, statement rewriting, entry points, generation
    - runtime:  frame base classes and the trampoline driver

Usage (in a module file; the source must be retrievable):

    import stacksafe

    @stacksafe.safe_recursion
    def total(n):
        if n == 0:
            return 0
        rest = total(n - 1)
        return n + rest

    total_safe = stacksafe.transform(total)
    total_safe(1_000_000)               # 500000500000

    stacksafe.build(sys.modules[__name__])   # installs total_safe next to total
"""

__version__ = "1.0.0"
__author__ = "stacksafe contributors"

from stacksafe.config import (
    AccessLevel,
    ExtensionMode,
    SafeRecursionConfig,
    safe_recursion,
    get_config,
)
from stacksafe.diagnostics import (
    Diagnostic,
    DiagnosticCollector,
    DiagnosticKind,
    DiagnosticSink,
    Severity,
    SourcePosition,
)
from stacksafe.errors import (
    BadDispatchError,
    GenerationError,
    SourceUnavailableError,
    StackSafeError,
    TransformationError,
)
from stacksafe.analysis import (
    CallSiteClassifier,
    CallSiteReport,
    CallSiteRole,
    RecursionGroup,
    RecursiveFunction,
)
from stacksafe.compiler import (
    GenerationResult,
    GeneratedGroup,
    SafeRecursionGenerator,
    build,
    transform,
    transform_group,
)
from stacksafe.runtime import CallFrame, DispatchFrame, Trampoline
