"""
Statement Rewriter
==================

Turns a member's body into a step procedure: a generator that suspends at
every member call instead of calling.

Rewrite rules (``F`` frames the callee's arguments, ``slot`` is the callee's
result slot on the runner, ``own`` the caller's):

    f(x)                    yield F(x)
    y = f(x)                yield F(x); y = slot
    y += f(x)               t = y; yield F(x); y = operator.iadd(t, slot)
    y: T = f(x)             yield F(x); y: T = slot
    a, b = e, f(x)          split per element (see below)
    return f(x)             yield F(x); own = slot; return
    return e                own = e; return
    return                  own = None; return      (when own exists)
    <falls off the end>     own = None

An augmented assignment reads its target before the call, as Python does.
A void callee has no slot; reading its "result" reads ``None``. In a mutual
group ``F(x)`` is wrapped in the group's dispatch frame.

Multi-target declarations keep Python's semantics (every value is evaluated
before any name is bound): when no value reads a target name the statement is
split into ordered single assignments, otherwise (or when a target is declared
``global`` and so visible to the callee) every value goes to a fresh temporary
and a final tuple assignment binds the targets.

The original tree is never modified: replaced statements are rebuilt, compound
statements are shallow-copied with rewritten bodies, and everything else is
deep-copied.
"""

import ast
import copy
import logging
from typing import Dict, List, Optional, Set

from stacksafe.analysis.call_sites import CallSite, CallSiteReport, CallSiteRole
from stacksafe.analysis.recursion_group import RecursiveFunction
from stacksafe.compiler.frame_layout import CallFrameLayout, GroupLayout
from stacksafe.diagnostics import DiagnosticSink
from stacksafe.errors import GenerationError
from stacksafe.utils import ast_helpers as A

logger = logging.getLogger(__name__)

# Fields that hold nested statement lists (or handlers/cases holding them)
_BLOCK_FIELDS = ('body', 'orelse', 'finalbody', 'handlers', 'cases')

# In-place functions of the operator module per augmented-assignment operator
_INPLACE_OPERATORS = {
    ast.Add: 'iadd',
    ast.Sub: 'isub',
    ast.Mult: 'imul',
    ast.MatMult: 'imatmul',
    ast.Div: 'itruediv',
    ast.FloorDiv: 'ifloordiv',
    ast.Mod: 'imod',
    ast.Pow: 'ipow',
    ast.LShift: 'ilshift',
    ast.RShift: 'irshift',
    ast.BitOr: 'ior',
    ast.BitXor: 'ixor',
    ast.BitAnd: 'iand',
}


class StatementRewriter:
    """
    Produces the step procedure of one member.

    Usage:
        rewriter = StatementRewriter(layout, sink)
        step = rewriter.rewrite(function, report)   # None on hard failure
    """

    def __init__(self, layout: GroupLayout, sink: DiagnosticSink):
        self.layout = layout
        self.sink = sink
        self._function: Optional[RecursiveFunction] = None
        self._frame: Optional[CallFrameLayout] = None
        self._sites: Dict[int, List[CallSite]] = {}
        self._globals: Set[str] = set()
        self._suspends = 0

    def rewrite(
        self, function: RecursiveFunction, report: CallSiteReport
    ) -> Optional[ast.FunctionDef]:
        if report.has_critical_failure:
            return None

        self._function = function
        self._frame = self.layout.frame_of(function)
        self._sites = report.sites_by_statement()
        self._globals = A.declared_globals(function.node)
        self._suspends = 0

        body = self._rewrite_block(function.node.body)
        if self._frame.has_slot and not isinstance(body[-1], (ast.Return, ast.Raise)):
            body.append(A.assign(self.layout.slot_store(function), ast.Constant(value=None)))
        if not self._suspends:
            # Still has to be a generator for the driver
            body.insert(0, ast.Expr(value=ast.YieldFrom(
                value=ast.Tuple(elts=[], ctx=ast.Load())
            )))

        support = self.layout.support
        prologue: List[ast.stmt] = []
        if self._frame.fields:
            unpack = ast.Tuple(
                elts=[A.store(name) for name in self._frame.fields], ctx=ast.Store()
            )
            prologue.append(A.assign(unpack, A.load(support.frame)))

        logger.debug(
            f"Rewrote '{function.name}' with {self._suspends} suspension point(s)"
        )
        return A.make_function(
            self._frame.step_name,
            A.simple_arguments(support.runner, support.frame),
            prologue + body,
        )

    # ───────────────────────────────────────────────────────────────
    #  Blocks
    # ───────────────────────────────────────────────────────────────

    def _rewrite_block(self, statements: List[ast.stmt]) -> List[ast.stmt]:
        rewritten: List[ast.stmt] = []
        for statement in statements:
            sites = self._sites.get(id(statement))
            if sites:
                rewritten.extend(self._replace(statement, sites))
            else:
                rewritten.append(self._rewrite_node(statement))
        return rewritten

    def _rewrite_node(self, node: ast.AST) -> ast.AST:
        if isinstance(node, A.NESTED_SCOPES):
            return copy.deepcopy(node)
        if not any(isinstance(getattr(node, f, None), list) for f in _BLOCK_FIELDS):
            return copy.deepcopy(node)

        values = {}
        for name, value in ast.iter_fields(node):
            if name in _BLOCK_FIELDS and isinstance(value, list):
                if value and isinstance(value[0], ast.stmt):
                    values[name] = self._rewrite_block(value)
                else:
                    values[name] = [self._rewrite_node(item) for item in value]
            elif isinstance(value, (ast.AST, list)):
                values[name] = copy.deepcopy(value)
            else:
                values[name] = value
        return ast.copy_location(type(node)(**values), node)

    # ───────────────────────────────────────────────────────────────
    #  Replacement per role
    # ───────────────────────────────────────────────────────────────

    def _replace(self, statement: ast.stmt, sites: List[CallSite]) -> List[ast.stmt]:
        role = sites[0].role
        if len(sites) > 1 and role is not CallSiteRole.DECLARATION:
            raise GenerationError(
                f'{len(sites)} call sites recorded for one {type(statement).__name__} '
                f'statement: {ast.unparse(statement)!r}'
            )

        if role is CallSiteRole.RETURN_VALUE:
            return self._replace_return(self._expect(statement, ast.Return, role))

        site = sites[0]
        if role is CallSiteRole.VOID_CALL:
            self._expect(statement, ast.Expr, role)
            return [self._suspend(site)]

        if role is CallSiteRole.ASSIGNMENT:
            self._expect(statement, ast.Assign, role)
            return [
                self._suspend(site),
                ast.Assign(
                    targets=copy.deepcopy(statement.targets),
                    value=self.layout.slot_load(site.target),
                ),
            ]

        if role is CallSiteRole.AUGMENTED_ASSIGNMENT:
            self._expect(statement, ast.AugAssign, role)
            return self._replace_augmented(statement, site)

        if role is CallSiteRole.DECLARATION:
            if isinstance(statement, ast.AnnAssign):
                return [
                    self._suspend(site),
                    ast.AnnAssign(
                        target=copy.deepcopy(statement.target),
                        annotation=copy.deepcopy(statement.annotation),
                        value=self.layout.slot_load(site.target),
                        simple=statement.simple,
                    ),
                ]
            return self._split_declaration(
                self._expect(statement, ast.Assign, role), sites
            )

        if role is CallSiteRole.RETURN_CALL:
            self._expect(statement, ast.Return, role)
            replacement = [self._suspend(site)]
            if site.target is not self._function and self._frame.has_slot:
                replacement.append(A.assign(
                    self.layout.slot_store(self._function),
                    self.layout.slot_load(site.target),
                ))
            replacement.append(A.bare_return())
            return replacement

        raise GenerationError(f'Unknown call site role {role!r}')

    def _replace_augmented(self, statement: ast.AugAssign, site: CallSite) -> List[ast.stmt]:
        # The target is read before the callee runs; the callee may rebind it
        saved = self.layout.names.hidden('value')
        operation = A.attribute(
            self.layout.support.operator, _INPLACE_OPERATORS[type(statement.op)]
        )
        return [
            A.assign(A.store(saved), A.load(statement.target.id)),
            self._suspend(site),
            A.assign(
                A.store(statement.target.id),
                A.call(operation, [A.load(saved), self.layout.slot_load(site.target)]),
            ),
        ]

    def _replace_return(self, statement: ast.Return) -> List[ast.stmt]:
        if not self._frame.has_slot:
            if statement.value is not None:
                raise GenerationError(
                    f"Return value in '{self._function.name}' without a result slot"
                )
            return [A.bare_return()]
        value = (
            copy.deepcopy(statement.value)
            if statement.value is not None
            else ast.Constant(value=None)
        )
        return [
            A.assign(self.layout.slot_store(self._function), value),
            A.bare_return(),
        ]

    def _split_declaration(
        self, statement: ast.Assign, sites: List[CallSite]
    ) -> List[ast.stmt]:
        target = statement.targets[0]
        targets = target.elts
        values = statement.value.elts
        calls = {site.element: site for site in sites}

        bound = {t.id for t in targets if isinstance(t, ast.Name)}
        read = {
            node.id
            for value in values
            for node in ast.walk(value)
            if isinstance(node, ast.Name)
        }
        direct = len(bound) == len(targets) and not (bound & (read | self._globals))

        replacement: List[ast.stmt] = []
        temporaries: List[str] = []
        for index, (name, value) in enumerate(zip(targets, values)):
            if direct:
                destination = copy.deepcopy(name)
            else:
                temporaries.append(self.layout.names.hidden('value'))
                destination = A.store(temporaries[-1])

            site = calls.get(index)
            if site is not None:
                replacement.append(self._suspend(site))
                replacement.append(
                    A.assign(destination, self.layout.slot_load(site.target))
                )
            else:
                replacement.append(A.assign(destination, copy.deepcopy(value)))

        if not direct:
            replacement.append(A.assign(
                copy.deepcopy(target),
                ast.Tuple(elts=[A.load(t) for t in temporaries], ctx=ast.Load()),
            ))
        return replacement

    # ───────────────────────────────────────────────────────────────
    #  Helpers
    # ───────────────────────────────────────────────────────────────

    def _suspend(self, site: CallSite) -> ast.stmt:
        self._suspends += 1
        return self.layout.suspend_call(site.resolved, site.call)

    @staticmethod
    def _expect(statement: ast.stmt, kind: type, role: CallSiteRole) -> ast.stmt:
        if not isinstance(statement, kind):
            raise GenerationError(
                f'Unexpected statement {type(statement).__name__} for role '
                f'{role.value}: {ast.unparse(statement)!r}'
            )
        return statement
