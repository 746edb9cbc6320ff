"""
Exception hierarchy
===================

Every exception raised by stacksafe derives from :class:`StackSafeError`.

    StackSafeError
     ├── BadDispatchError        unrecognised call-site discriminant at run time
     ├── GenerationError         unexpected construct reached a code-generation pass
     ├── SourceUnavailableError  a callable's source text could not be retrieved
     └── TransformationError     functional API gave up; carries the diagnostics

``BadDispatchError`` and ``GenerationError`` signal defects in the engine itself,
never in the user's code. Unsupported user code is reported through diagnostics.
"""

from typing import List, Sequence


class StackSafeError(Exception):
    """Base class for all stacksafe errors."""


class BadDispatchError(StackSafeError):
    """A dispatch frame carried a call site the runner does not know."""

    def __init__(self, call_site, group: str = ''):
        self.call_site = call_site
        self.group = group
        where = f" in group '{group}'" if group else ''
        super().__init__(f'Unexpected call site {call_site!r}{where}')


class GenerationError(StackSafeError):
    """A statement or node kind reached a pass that cannot handle it."""


class SourceUnavailableError(StackSafeError):
    """Raised when ``inspect`` cannot provide the source of a function."""


class TransformationError(StackSafeError):
    """
    Raised by :func:`stacksafe.transform` when no entry point was produced.

    Attributes:
        diagnostics: Every diagnostic reported while processing the request.
    """

    def __init__(self, message: str, diagnostics: Sequence = ()):
        self.diagnostics: List = list(diagnostics)
        details = '; '.join(str(d) for d in self.diagnostics if d.is_error)
        super().__init__(f'{message}: {details}' if details else message)
