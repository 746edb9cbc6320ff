"""
Diagnostics
===========

Fire-and-forget reporting channel shared by every generation pass.

A pass never raises for unsupported user code; it reports a :class:`Diagnostic`
to a :class:`DiagnosticSink` and, for hard failures, marks its own result as
failed so that no artifact is emitted for the affected group.

Kinds and their default severities:

    LOG                              info     progress / statistics
    INTERNAL_ERROR                   error    engine defect, carries the fault
    UNSUPPORTED_SYNTAX               error    construct the rewriter cannot handle
    POTENTIALLY_UNSUPPORTED_SYNTAX   warning  construct whose semantics may change
    CONFIGURATION_WARNING            warning  suspicious marker configuration

:class:`DiagnosticCollector` keeps everything it receives and mirrors each
diagnostic to :mod:`logging` at the matching level.
"""

import ast
import logging
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import List, Optional

logger = logging.getLogger(__name__)


class Severity(IntEnum):
    """Ordered severities; higher is worse."""
    INFO = 0
    WARNING = 1
    ERROR = 2

    @property
    def log_level(self) -> int:
        return _LOG_LEVELS[self]


_LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


class DiagnosticKind(Enum):
    """Diagnostic categories as ``(code, default severity, title)``."""
    LOG = ('SSR001', Severity.INFO, 'Log')
    INTERNAL_ERROR = ('SSR002', Severity.ERROR, 'Internal error')
    UNSUPPORTED_SYNTAX = ('SSR003', Severity.ERROR, 'Unsupported syntax')
    POTENTIALLY_UNSUPPORTED_SYNTAX = (
        'SSR004', Severity.WARNING, 'Potentially unsupported syntax'
    )
    CONFIGURATION_WARNING = ('SSR005', Severity.WARNING, 'Configuration warning')

    @property
    def code(self) -> str:
        return self.value[0]

    @property
    def severity(self) -> Severity:
        return self.value[1]

    @property
    def title(self) -> str:
        return self.value[2]


@dataclass(frozen=True)
class SourcePosition:
    """A location in user source: file name, 1-based line, 0-based column."""
    filename: str = '<unknown>'
    lineno: int = 0
    col_offset: int = 0

    @classmethod
    def from_node(
        cls, node: ast.AST, filename: str = '<unknown>', line_offset: int = 0
    ) -> 'SourcePosition':
        """Position of *node*, shifted by *line_offset* lines."""
        return cls(
            filename=filename,
            lineno=getattr(node, 'lineno', 0) + line_offset,
            col_offset=getattr(node, 'col_offset', 0),
        )

    def __str__(self) -> str:
        return f'{self.filename}:{self.lineno}:{self.col_offset}'


def escape_message(message: str) -> str:
    """Keep every diagnostic on one line."""
    return message.replace('\n', '\\n ')


@dataclass(frozen=True)
class Diagnostic:
    severity: Severity
    kind: DiagnosticKind
    message: str
    position: Optional[SourcePosition] = None

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def __str__(self) -> str:
        where = f'{self.position}: ' if self.position is not None else ''
        return (
            f'{where}{self.severity.name.lower()} {self.kind.code}: '
            f'{self.message}'
        )


class DiagnosticSink:
    """
    Receiver of diagnostics.

    Subclasses implement :meth:`report`. The ``log``/``..._error``/``..._warning``
    helpers build a :class:`Diagnostic` of the right kind and hand it over.
    """

    def report(self, diagnostic: Diagnostic) -> None:
        raise NotImplementedError

    def _emit(
        self,
        kind: DiagnosticKind,
        position: Optional[SourcePosition],
        message: str,
    ) -> None:
        self.report(Diagnostic(
            severity=kind.severity,
            kind=kind,
            message=escape_message(message),
            position=position,
        ))

    def log(self, position: Optional[SourcePosition], message: str) -> None:
        self._emit(DiagnosticKind.LOG, position, message)

    def internal_error(
        self, position: Optional[SourcePosition], message: str
    ) -> None:
        self._emit(DiagnosticKind.INTERNAL_ERROR, position, message)

    def unsupported_syntax_error(
        self, position: Optional[SourcePosition], message: str
    ) -> None:
        self._emit(DiagnosticKind.UNSUPPORTED_SYNTAX, position, message)

    def unsupported_syntax_warning(
        self, position: Optional[SourcePosition], message: str
    ) -> None:
        self._emit(DiagnosticKind.POTENTIALLY_UNSUPPORTED_SYNTAX, position, message)

    def configuration_warning(
        self, position: Optional[SourcePosition], message: str
    ) -> None:
        self._emit(DiagnosticKind.CONFIGURATION_WARNING, position, message)


class DiagnosticCollector(DiagnosticSink):
    """
    Sink that stores diagnostics and mirrors them to :mod:`logging`.

    Info-level diagnostics are dropped unless ``emit_logs`` is set. Kept
    diagnostics are also handed to ``forward_to`` when one is given.
    """

    def __init__(
        self,
        *,
        emit_logs: bool = False,
        forward_to: Optional[DiagnosticSink] = None,
    ):
        self.emit_logs = emit_logs
        self.forward_to = forward_to
        self.diagnostics: List[Diagnostic] = []

    def report(self, diagnostic: Diagnostic) -> None:
        if diagnostic.severity is Severity.INFO and not self.emit_logs:
            return
        self.diagnostics.append(diagnostic)
        logger.log(diagnostic.severity.log_level, str(diagnostic))
        if self.forward_to is not None:
            self.forward_to.report(diagnostic)

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity is Severity.ERROR]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity is Severity.WARNING]

    @property
    def has_errors(self) -> bool:
        return any(d.is_error for d in self.diagnostics)

    def of_kind(self, kind: DiagnosticKind) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.kind is kind]

    def clear(self) -> None:
        self.diagnostics.clear()
