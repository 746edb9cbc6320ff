"""
Dispatch Entry-Point Generator
==============================

Emits the pieces that connect step procedures to callers:

    Runner          subclass of :class:`~stacksafe.runtime.trampoline.Trampoline`
                    holding one result slot per member with a return value.
                    Its ``_compute`` is the member step itself (simple group) or
                    a router over the call-site discriminant (mutual group):

                        def _compute(runner, frame):
                            site, inner = frame
                            if site is CallSite.IS_ODD:
                                return is_odd_step(runner, inner)
                            ...
                            raise BadDispatchError(...)

    entry points    one function per exposed member, same signature as the
                    original, running a fresh runner per call:

                        def is_odd_safe(n):
                            runner = Runner()
                            runner.run(Dispatch.from_is_odd(is_odd_Frame(n)))
                            return runner.is_odd_result

A member is exposed when its marker asks for it, and always when it is the
only member of its group.
"""

import ast
import logging
from dataclasses import dataclass
from typing import Dict, List

from stacksafe.analysis.recursion_group import RecursiveFunction
from stacksafe.compiler.frame_layout import GroupLayout
from stacksafe.diagnostics import DiagnosticSink
from stacksafe.utils import ast_helpers as A

logger = logging.getLogger(__name__)


@dataclass
class EntryPoint:
    """An entry point definition and the names it is known by."""
    function: RecursiveFunction
    public_name: str
    local_name: str
    node: ast.FunctionDef


class EntryPointGenerator:
    """
    Usage:
        generator = EntryPointGenerator(layout, sink)
        runner = generator.build_runner()
        entries = generator.build_entry_points()
    """

    def __init__(self, layout: GroupLayout, sink: DiagnosticSink):
        self.layout = layout
        self.sink = sink

    # ───────────────────────────────────────────────────────────────
    #  Runner
    # ───────────────────────────────────────────────────────────────

    def build_runner(self) -> ast.ClassDef:
        layout = self.layout
        body: List[ast.stmt] = [
            A.assign(A.store(frame.slot_name), ast.Constant(value=None))
            for frame in layout.frames.values()
            if frame.has_slot
        ]
        if layout.is_mutual:
            body.append(self._build_dispatch_method())
        else:
            (frame,) = layout.frames.values()
            body.append(A.assign(A.store('_compute'), A.load(frame.step_name)))
        return A.make_class(layout.runner_name, [layout.support.trampoline], body)

    def _build_dispatch_method(self) -> ast.FunctionDef:
        layout = self.layout
        s = layout.support
        body: List[ast.stmt] = [A.assign(
            ast.Tuple(elts=[A.store(s.site), A.store(s.inner)], ctx=ast.Store()),
            A.load(s.frame),
        )]
        for frame in layout.frames.values():
            test = ast.Compare(
                left=A.load(s.site),
                ops=[ast.Is()],
                comparators=[A.attribute(layout.enum_name, frame.site_name)],
            )
            step = A.call(A.load(frame.step_name), [A.load(s.runner), A.load(s.inner)])
            body.append(ast.If(test=test, body=[ast.Return(value=step)], orelse=[]))
        body.append(ast.Raise(
            exc=A.call(
                A.load(s.bad_dispatch),
                [A.load(s.site), ast.Constant(value=layout.group.key)],
            ),
            cause=None,
        ))
        return A.make_function('_compute', A.simple_arguments(s.runner, s.frame), body)

    # ───────────────────────────────────────────────────────────────
    #  Entry points
    # ───────────────────────────────────────────────────────────────

    def exposed_members(self) -> List[RecursiveFunction]:
        members = self.layout.group.members
        if len(members) == 1:
            return list(members)
        return [m for m in members if m.config.expose_as_entry_point]

    def build_entry_points(self) -> List[EntryPoint]:
        entries = []
        for function in self.exposed_members():
            public = function.entry_point_name
            local = self.layout.names.fresh(public.lstrip('_') or 'entry')
            entries.append(EntryPoint(
                function=function,
                public_name=public,
                local_name=local,
                node=self._build_entry_point(function, local),
            ))
            logger.debug(f"Entry point '{public}' for '{function.name}'")
        return entries

    def _build_entry_point(self, function: RecursiveFunction, name: str) -> ast.FunctionDef:
        layout = self.layout
        frame = layout.frame_of(function)
        runner = layout.support.runner
        arguments = A.signature_copy(
            function.node.args, placeholder_defaults=frame.placeholder_defaults
        )
        args, keywords = A.forward_arguments(function.node.args)
        start = layout.wrap(
            function, A.call(A.load(frame.class_name), args, keywords)
        )
        body: List[ast.stmt] = [
            A.assign(A.store(runner), A.call(A.load(layout.runner_name))),
            ast.Expr(value=A.call(A.attribute(runner, 'run'), [start])),
        ]
        if frame.has_slot:
            body.append(ast.Return(value=A.attribute(runner, frame.slot_name)))
        return A.make_function(name, arguments, body)

    def outputs(self, entries: List[EntryPoint]) -> Dict[str, str]:
        """Generated local names the factory hands back, keyed by role."""
        out = {'runner': self.layout.runner_name}
        for frame in self.layout.frames.values():
            out[f'frame:{frame.function.name}'] = frame.class_name
        if self.layout.is_mutual:
            out['call_sites'] = self.layout.enum_name
            out['dispatch'] = self.layout.dispatch_name
        for entry in entries:
            out[f'entry:{entry.function.name}'] = entry.local_name
        return out
