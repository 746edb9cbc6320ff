"""
Call-Site Classifier
====================

Walks one member's body and decides, for every call to a group member, which
syntactic role it plays. Only the roles below can be rewritten into a
suspension point; every other placement is a hard failure for the group.

    VOID_CALL              f(x)                       expression statement
    ASSIGNMENT             y = f(x)                   assignment statement
    AUGMENTED_ASSIGNMENT   y += f(x)                  plain-name target only
    DECLARATION            y: int = f(x)
                           a, b = g, f(x)             one site per call element
    RETURN_CALL            return f(x)
    RETURN_VALUE           return expr / return       no member call involved

Besides placement, the classifier rejects constructs that cannot survive the
move into a generator step (``yield``, ``await``, ``nonlocal``, zero-argument
``super()``) and warns about exception handling, whose behaviour across
suspension points differs from native recursion.

The input tree is never modified, so classifying twice yields equal reports.
"""

import ast
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from stacksafe.analysis.recursion_group import (
    RecursionGroup,
    RecursiveFunction,
    ResolvedCall,
)
from stacksafe.diagnostics import DiagnosticSink
from stacksafe.utils.ast_helpers import NESTED_SCOPES

logger = logging.getLogger(__name__)


class CallSiteRole(Enum):
    VOID_CALL = 'void-statement-call'
    ASSIGNMENT = 'simple-assignment'
    AUGMENTED_ASSIGNMENT = 'augmented-assignment'
    DECLARATION = 'declaration-with-initializer'
    RETURN_CALL = 'return-of-call-result'
    RETURN_VALUE = 'return-of-non-call-expression'


@dataclass
class CallSite:
    """
    One classified location.

    ``statement`` is the enclosing statement that the rewriter replaces;
    ``element`` is the index inside a multi-target declaration.
    """
    role: CallSiteRole
    statement: ast.stmt
    call: Optional[ast.Call] = None
    resolved: Optional[ResolvedCall] = None
    element: Optional[int] = None

    @property
    def target(self) -> Optional[RecursiveFunction]:
        return self.resolved.target if self.resolved is not None else None

    def key(self) -> Tuple:
        """Structural identity, stable across repeated classification."""
        node = self.call if self.call is not None else self.statement
        return (
            self.role,
            self.target.name if self.target is not None else None,
            getattr(node, 'lineno', None),
            getattr(node, 'col_offset', None),
            self.element,
        )


@dataclass
class CallSiteReport:
    function_name: str
    sites: List[CallSite] = field(default_factory=list)
    has_critical_failure: bool = False
    warnings: int = 0

    def by_role(self, role: CallSiteRole) -> List[CallSite]:
        return [s for s in self.sites if s.role is role]

    @property
    def void_calls(self) -> List[CallSite]:
        return self.by_role(CallSiteRole.VOID_CALL)

    @property
    def assignments(self) -> List[CallSite]:
        return self.by_role(CallSiteRole.ASSIGNMENT)

    @property
    def declarations(self) -> List[CallSite]:
        return self.by_role(CallSiteRole.DECLARATION)

    @property
    def recursive_returns(self) -> List[CallSite]:
        return self.by_role(CallSiteRole.RETURN_CALL)

    @property
    def returns(self) -> List[CallSite]:
        return self.by_role(CallSiteRole.RETURN_VALUE)

    def sites_by_statement(self) -> Dict[int, List[CallSite]]:
        grouped: Dict[int, List[CallSite]] = defaultdict(list)
        for site in self.sites:
            grouped[id(site.statement)].append(site)
        return dict(grouped)

    def describe(self) -> List[Tuple]:
        return [s.key() for s in self.sites]

    def summary(self) -> str:
        counts = defaultdict(int)
        for site in self.sites:
            counts[site.role] += 1
        return (
            f"'{self.function_name}': "
            f"{counts[CallSiteRole.VOID_CALL]} void call(s), "
            f"{counts[CallSiteRole.ASSIGNMENT]} assignment(s), "
            f"{counts[CallSiteRole.AUGMENTED_ASSIGNMENT]} augmented assignment(s), "
            f"{counts[CallSiteRole.DECLARATION]} declaration(s), "
            f"{counts[CallSiteRole.RETURN_CALL]} recursive return(s), "
            f"{counts[CallSiteRole.RETURN_VALUE]} plain return(s)"
        )


class CallSiteClassifier:
    """
    Classifies the member call sites of one function.

    Usage:
        classifier = CallSiteClassifier(group, sink)
        report = classifier.classify(function)
        if report.has_critical_failure:
            ...
    """

    def __init__(self, group: RecursionGroup, sink: DiagnosticSink):
        self.group = group
        self.sink = sink

    def classify(self, function: RecursiveFunction) -> CallSiteReport:
        report = CallSiteReport(function_name=function.name)
        if isinstance(function.node, ast.AsyncFunctionDef):
            self.sink.unsupported_syntax_error(
                function.position(),
                f"'{function.name}' is a coroutine function; async recursion is not supported",
            )
            report.has_critical_failure = True
            return report

        visitor = _CallSiteVisitor(function, self.group, self.sink, report)
        for statement in function.node.body:
            visitor.visit(statement)
        logger.debug(f"Classified {report.summary()}")
        return report


class _CallSiteVisitor(ast.NodeVisitor):
    """Records call sites; keeps the chain of ancestors of the current node."""

    def __init__(
        self,
        function: RecursiveFunction,
        group: RecursionGroup,
        sink: DiagnosticSink,
        report: CallSiteReport,
    ):
        self.function = function
        self.group = group
        self.sink = sink
        self.report = report
        self._parents: List[ast.AST] = []
        # Depth tracking: >0 means we are inside a nested function/lambda/class
        self._depth = 0

    # ───────────────────────────────────────────────────────────────
    #  Traversal
    # ───────────────────────────────────────────────────────────────

    def visit(self, node: ast.AST):
        nested = isinstance(node, NESTED_SCOPES)
        if nested:
            self._depth += 1
        method = getattr(self, 'visit_' + node.__class__.__name__, None)
        if method is not None:
            method(node)
        else:
            self.generic_visit(node)
        if nested:
            self._depth -= 1

    def generic_visit(self, node: ast.AST):
        self._parents.append(node)
        try:
            super().generic_visit(node)
        finally:
            self._parents.pop()

    # ───────────────────────────────────────────────────────────────
    #  Reporting helpers
    # ───────────────────────────────────────────────────────────────

    def _fail(self, node: ast.AST, message: str) -> None:
        self.sink.unsupported_syntax_error(self.function.position(node), message)
        self.report.has_critical_failure = True

    def _warn(self, node: ast.AST, message: str) -> None:
        self.sink.unsupported_syntax_warning(self.function.position(node), message)
        self.report.warnings += 1

    def _add(self, role: CallSiteRole, statement: ast.stmt,
             call: Optional[ast.Call] = None,
             resolved: Optional[ResolvedCall] = None,
             element: Optional[int] = None) -> None:
        self.report.sites.append(CallSite(role, statement, call, resolved, element))

    # ───────────────────────────────────────────────────────────────
    #  Member calls
    # ───────────────────────────────────────────────────────────────

    def visit_Call(self, node: ast.Call):
        self.generic_visit(node)
        resolved = self.group.resolve_call(node, self.function)
        if resolved is None:
            if self._is_bare_super(node) and self._depth == 0:
                self._fail(node, 'Zero-argument super() cannot be relocated; '
                                 'use super(Class, self) instead')
            return
        if self._depth > 0:
            self._fail(
                node,
                f"Call to '{resolved.target.name}' inside a nested function, "
                f"lambda or class is not supported: '{ast.unparse(node)}'",
            )
            return
        self._classify_placement(node, resolved)

    def _classify_placement(self, node: ast.Call, resolved: ResolvedCall) -> None:
        parent = self._parents[-1] if self._parents else None

        if isinstance(parent, ast.Expr):
            self._add(CallSiteRole.VOID_CALL, parent, node, resolved)
        elif isinstance(parent, ast.Assign) and parent.value is node:
            self._add(CallSiteRole.ASSIGNMENT, parent, node, resolved)
        elif isinstance(parent, ast.AnnAssign) and parent.value is node:
            self._add(CallSiteRole.DECLARATION, parent, node, resolved)
        elif isinstance(parent, ast.AugAssign) and parent.value is node:
            if isinstance(parent.target, ast.Name):
                self._add(CallSiteRole.AUGMENTED_ASSIGNMENT, parent, node, resolved)
            else:
                self._fail(parent, 'Augmented assignment of a recursive call result '
                                   f"to '{ast.unparse(parent.target)}' is not supported; "
                                   'assign to a plain variable first')
        elif isinstance(parent, ast.Return):
            self._add(CallSiteRole.RETURN_CALL, parent, node, resolved)
        elif isinstance(parent, (ast.Tuple, ast.List)) and self._is_multi_declaration(parent):
            statement = self._parents[-2]
            self._add(CallSiteRole.DECLARATION, statement, node, resolved,
                      element=parent.elts.index(node))
        else:
            location = type(parent).__name__ if parent is not None else 'module'
            snippet = ast.unparse(parent) if parent is not None else ast.unparse(node)
            self._fail(
                node,
                f'Unsupported location for a recursive call ({location}): '
                f"'{snippet}'. Move the call into its own statement",
            )

    def _is_multi_declaration(self, value: ast.expr) -> bool:
        """``a, b = x, f(y)``: equal-length targets and values, no starred items."""
        if len(self._parents) < 2:
            return False
        statement = self._parents[-2]
        if not (isinstance(statement, ast.Assign) and statement.value is value):
            return False
        if len(statement.targets) != 1:
            return False
        target = statement.targets[0]
        if not isinstance(target, (ast.Tuple, ast.List)):
            return False
        if len(target.elts) != len(value.elts):
            return False
        return not any(
            isinstance(e, ast.Starred) for e in target.elts + value.elts
        )

    @staticmethod
    def _is_bare_super(node: ast.Call) -> bool:
        return (
            isinstance(node.func, ast.Name)
            and node.func.id == 'super'
            and not node.args
            and not node.keywords
        )

    # ───────────────────────────────────────────────────────────────
    #  Returns
    # ───────────────────────────────────────────────────────────────

    def visit_Return(self, node: ast.Return):
        if self._depth == 0:
            value = node.value
            if not (isinstance(value, ast.Call)
                    and self.group.resolve_call(value, self.function) is not None):
                self._add(CallSiteRole.RETURN_VALUE, node)
        self.generic_visit(node)

    # ───────────────────────────────────────────────────────────────
    #  Constructs that cannot move into a generator step
    # ───────────────────────────────────────────────────────────────

    def visit_Yield(self, node: ast.Yield):
        if self._depth == 0:
            self._fail(node, f"'{self.function.name}' is a generator; "
                             'yield in a recursive function is not supported')
        self.generic_visit(node)

    def visit_YieldFrom(self, node: ast.YieldFrom):
        if self._depth == 0:
            self._fail(node, f"'{self.function.name}' is a generator; "
                             'yield from in a recursive function is not supported')
        self.generic_visit(node)

    def visit_Await(self, node: ast.Await):
        if self._depth == 0:
            self._fail(node, 'await in a recursive function is not supported')
        self.generic_visit(node)

    def visit_Nonlocal(self, node: ast.Nonlocal):
        if self._depth == 0:
            self._fail(node, f"nonlocal {', '.join(node.names)}: rebinding enclosing "
                             'variables is not supported')

    # ───────────────────────────────────────────────────────────────
    #  Exception handling (warnings only)
    # ───────────────────────────────────────────────────────────────

    def visit_Raise(self, node: ast.Raise):
        if self._depth == 0:
            self._warn(node, 'Raising exceptions in recursive code might not be '
                             'handled by callers the way it would be natively')
        self.generic_visit(node)

    def visit_Try(self, node):
        if self._depth == 0:
            for handler in node.handlers:
                self._warn(handler, 'Catching exceptions across recursive calls is not '
                                    'supported; handlers only see errors raised in '
                                    'their own invocation')
            if node.finalbody:
                self._warn(node.finalbody[0], 'finally blocks run when a call completes '
                                              'or when an error unwinds the call chain')
        self.generic_visit(node)

    visit_TryStar = visit_Try
