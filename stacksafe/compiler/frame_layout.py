"""
Call-Frame Layout Builder
=========================

Decides the shape of every generated data type of a group and emits their
definitions:

    <member>_Frame      one immutable frame class per member, fields in
                        parameter order, constructor mirroring the member's
                        signature (defaults, ``*args``, keyword-only, ``**kw``)
    <group>_CallSite    mutual groups only: ``IntEnum`` discriminant, one
                        member per function in order of first encounter
    <group>_Dispatch    mutual groups only: ``(call_site, frame)`` pair with a
                        ``from_<member>`` converting constructor per member

Python gives no control over memory layout, so the dispatch frame is always
the tagged-variant form; generic groups use it too.

All names come from the group's :class:`NameAllocator`, so nothing generated
can collide with an identifier of the user code. The layout also owns the
expression builders the rewriter and the entry-point generator share:
``new_frame`` (frame construction for a call), ``wrap`` (mutual dispatch) and
the result-slot accessors.
"""

import ast
import copy
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from stacksafe.analysis.recursion_group import (
    RecursionGroup,
    RecursiveFunction,
    ResolvedCall,
)
from stacksafe.diagnostics import DiagnosticSink
from stacksafe.runtime.frames import CallFrame
from stacksafe.runtime.trampoline import Trampoline
from stacksafe.utils import ast_helpers as A
from stacksafe.utils.naming import NameAllocator, identifier_base

logger = logging.getLogger(__name__)


@dataclass
class SupportNames:
    """Hygienic local names of the runtime helpers and generated parameters."""
    call_frame: str
    dispatch_frame: str
    make_frame: str
    trampoline: str
    int_enum: str
    bad_dispatch: str
    operator: str
    cls: str
    runner: str
    frame: str
    site: str
    inner: str

    @classmethod
    def allocate(cls, names: NameAllocator) -> 'SupportNames':
        return cls(
            call_frame=names.hidden('CallFrame'),
            dispatch_frame=names.hidden('DispatchFrame'),
            make_frame=names.hidden('make_frame'),
            trampoline=names.hidden('Trampoline'),
            int_enum=names.hidden('IntEnum'),
            bad_dispatch=names.hidden('BadDispatchError'),
            operator=names.hidden('operator'),
            cls=names.hidden('cls'),
            runner=names.hidden('runner'),
            frame=names.hidden('frame'),
            site=names.hidden('site'),
            inner=names.hidden('inner'),
        )


@dataclass
class CallFrameLayout:
    function: RecursiveFunction
    class_name: str
    new_name: str
    step_name: str
    fields: List[str]
    slot_name: Optional[str] = None
    site_name: Optional[str] = None
    wrap_name: Optional[str] = None
    placeholder_defaults: bool = False

    @property
    def has_slot(self) -> bool:
        return self.slot_name is not None

    def build(self, support: SupportNames) -> List[ast.stmt]:
        """``__new__`` function plus the frame class itself."""
        arguments = A.signature_copy(
            self.function.node.args,
            leading=(support.cls,),
            placeholder_defaults=self.placeholder_defaults,
        )
        values = ast.Tuple(elts=[A.load(f) for f in self.fields], ctx=ast.Load())
        constructor = A.make_function(
            self.new_name,
            arguments,
            [ast.Return(value=A.call(
                A.load(support.make_frame), [A.load(support.cls), values]
            ))],
        )
        body = A.parse_statements(
            f"""
            __slots__ = ()
            _fields = {tuple(self.fields)!r}
            __new__ = {self.new_name}
            """
        )
        frame_class = A.make_class(self.class_name, [support.call_frame], body)
        return [constructor, frame_class]


@dataclass
class GroupLayout:
    group: RecursionGroup
    support: SupportNames
    names: NameAllocator
    frames: Dict[str, CallFrameLayout] = field(default_factory=dict)
    runner_name: str = ''
    factory_name: str = ''
    enum_name: Optional[str] = None
    dispatch_name: Optional[str] = None

    @property
    def is_mutual(self) -> bool:
        return self.group.is_mutual

    def frame_of(self, function: RecursiveFunction) -> CallFrameLayout:
        return self.frames[function.name]

    # ---- expression builders ----------------------------------------------

    def new_frame(self, resolved: ResolvedCall, node: ast.Call) -> ast.Call:
        """Frame construction carrying the arguments of call *node*."""
        layout = self.frame_of(resolved.target)
        args = [copy.deepcopy(a) for a in node.args]
        if resolved.receiver is not None:
            args.insert(0, copy.deepcopy(resolved.receiver))
        keywords = [copy.deepcopy(k) for k in node.keywords]
        return A.call(A.load(layout.class_name), args, keywords)

    def wrap(self, function: RecursiveFunction, frame: ast.expr) -> ast.expr:
        """Turn a member frame into what the runner's ``_compute`` accepts."""
        if not self.is_mutual:
            return frame
        layout = self.frame_of(function)
        return A.call(A.attribute(self.dispatch_name, layout.wrap_name), [frame])

    def suspend_call(self, resolved: ResolvedCall, node: ast.Call) -> ast.stmt:
        return A.suspend(self.wrap(resolved.target, self.new_frame(resolved, node)))

    def slot_load(self, function: RecursiveFunction) -> ast.expr:
        layout = self.frame_of(function)
        if layout.slot_name is None:
            return ast.Constant(value=None)
        return A.attribute(self.support.runner, layout.slot_name)

    def slot_store(self, function: RecursiveFunction) -> ast.Attribute:
        layout = self.frame_of(function)
        return A.attribute(self.support.runner, layout.slot_name, ast.Store())

    # ---- declarations -------------------------------------------------------

    def imports(self) -> List[ast.stmt]:
        s = self.support
        lines = [
            f'from {CallFrame.__module__} import '
            f'CallFrame as {s.call_frame}, DispatchFrame as {s.dispatch_frame}, '
            f'make_frame as {s.make_frame}',
            f'from {Trampoline.__module__} import '
            f'Trampoline as {s.trampoline}, BadDispatchError as {s.bad_dispatch}',
            f'import operator as {s.operator}',
        ]
        if self.is_mutual:
            lines.append(f'from enum import IntEnum as {s.int_enum}')
        return A.parse_statements('\n'.join(lines))

    def declarations(self) -> List[ast.stmt]:
        statements: List[ast.stmt] = []
        if self.is_mutual:
            statements.append(self._build_enum())
        for layout in self.frames.values():
            statements.extend(layout.build(self.support))
        if self.is_mutual:
            statements.append(self._build_dispatch())
        return statements

    def _build_enum(self) -> ast.ClassDef:
        body = [
            A.assign(A.store(layout.site_name), ast.Constant(value=index))
            for index, layout in enumerate(self.frames.values())
        ]
        return A.make_class(self.enum_name, [self.support.int_enum], body)

    def _build_dispatch(self) -> ast.ClassDef:
        s = self.support
        body: List[ast.stmt] = A.parse_statements('__slots__ = ()')
        for layout in self.frames.values():
            pair = ast.Tuple(
                elts=[A.attribute(self.enum_name, layout.site_name), A.load(s.frame)],
                ctx=ast.Load(),
            )
            body.append(A.make_function(
                layout.wrap_name,
                A.simple_arguments(s.cls, s.frame),
                [ast.Return(value=A.call(A.load(s.make_frame), [A.load(s.cls), pair]))],
                decorators=[A.load('classmethod')],
            ))
        return A.make_class(self.dispatch_name, [s.dispatch_frame], body)


class FrameLayoutBuilder:
    """
    Builds the :class:`GroupLayout` of a recursion group.

    Usage:
        layout = FrameLayoutBuilder(sink).build(group, names)
    """

    def __init__(self, sink: DiagnosticSink):
        self.sink = sink

    def build(
        self, group: RecursionGroup, names: NameAllocator
    ) -> Optional[GroupLayout]:
        """Layout of *group*, or ``None`` when the group itself is invalid."""
        if not group.validate(self.sink):
            return None
        support = SupportNames.allocate(names)
        base = identifier_base(group.key)
        layout = GroupLayout(
            group=group,
            support=support,
            names=names,
            runner_name=names.fresh(f'{base}_Runner'),
            factory_name=names.hidden(f'build_{base}'),
        )
        if group.is_mutual:
            layout.enum_name = names.fresh(f'{base}_CallSite')
            layout.dispatch_name = names.fresh(f'{base}_Dispatch')

        sites = NameAllocator()
        for function in group.members:
            member = identifier_base(function.name)
            frame = CallFrameLayout(
                function=function,
                class_name=names.fresh(f'{member}_Frame'),
                new_name=names.fresh(f'{member}_Frame_new'),
                step_name=names.fresh(f'{member}_step'),
                fields=function.params,
                slot_name=names.fresh(f'{member}_result') if function.has_result else None,
                placeholder_defaults=function.func is not None,
            )
            if group.is_mutual:
                frame.site_name = sites.fresh(member.upper())
                frame.wrap_name = f'from_{frame.site_name.lower()}'
            layout.frames[function.name] = frame

        logger.debug(
            f"Layout for '{group.key}': {len(layout.frames)} frame type(s), "
            f"{'tagged dispatch' if group.is_mutual else 'direct frames'}"
            f"{', generic' if group.is_generic else ''}"
        )
        return layout
