"""
Recursive Functions and Recursion Groups
========================================

A :class:`RecursiveFunction` is one marked function: its parsed definition,
its marker configuration and everything the later passes need to know about
how it binds (plain function, method, static method, class method).

A :class:`RecursionGroup` is the unit of generation:

    - a *simple* group holds exactly one function with an empty group id;
      only calls to itself are rewritten;
    - a *mutual* group holds every function sharing a non-empty group id;
      calls between any two members are rewritten and routed through a
      dispatch frame.

Call resolution:
    ``name(...)``        a plain-function member called ``name``
    ``recv.name(...)``   a member of the caller's class when ``recv`` is the
                         caller's receiver (``self``/``cls``) or the class name

Methods are stored with CPython's private-name mangling already applied, so
member names are the attribute names found in the owning class.
"""

import ast
import copy
import inspect
import textwrap
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from stacksafe.config import SafeRecursionConfig, ExtensionMode, get_config
from stacksafe.diagnostics import DiagnosticSink, SourcePosition
from stacksafe.utils.ast_helpers import (
    PrivateNameMangler,
    find_function,
    has_return_value,
    parameter_names,
    parse_callable,
    positional_names,
)
from stacksafe.errors import SourceUnavailableError


class FunctionKind(Enum):
    FUNCTION = 'function'
    METHOD = 'method'
    STATICMETHOD = 'staticmethod'
    CLASSMETHOD = 'classmethod'


_DECORATOR_KINDS = {
    'staticmethod': FunctionKind.STATICMETHOD,
    'classmethod': FunctionKind.CLASSMETHOD,
}


@dataclass
class RecursiveFunction:
    """A marked function together with its parsed definition."""
    node: ast.FunctionDef
    config: SafeRecursionConfig = field(default_factory=SafeRecursionConfig)
    kind: FunctionKind = FunctionKind.FUNCTION
    owner: Optional[str] = None
    filename: str = '<unknown>'
    line_offset: int = 0
    func: Optional[Callable] = None
    globals: Optional[Dict[str, Any]] = None
    display_name: str = ''

    def __post_init__(self):
        if not self.display_name:
            self.display_name = self.node.name
        if self.owner and self.kind is not FunctionKind.FUNCTION:
            self.node = PrivateNameMangler(self.owner).visit(copy.deepcopy(self.node))

    # ---- identity -------------------------------------------------------

    @property
    def name(self) -> str:
        """Member name used for call resolution (mangled for methods)."""
        return self.node.name

    @property
    def qualname(self) -> str:
        if self.func is not None:
            return self.func.__qualname__
        if self.owner:
            return f'{self.owner}.{self.display_name}'
        return self.display_name

    @property
    def entry_point_name(self) -> str:
        return self.config.entry_point_name(self.display_name)

    # ---- signature ------------------------------------------------------

    @property
    def params(self) -> List[str]:
        return parameter_names(self.node.args)

    @property
    def has_result(self) -> bool:
        return has_return_value(self.node)

    @property
    def type_params(self) -> str:
        return ', '.join(
            ast.unparse(tp) for tp in getattr(self.node, 'type_params', None) or ()
        )

    @property
    def is_bound(self) -> bool:
        """Whether attribute calls on this member pass an implicit receiver."""
        return self.kind in (FunctionKind.METHOD, FunctionKind.CLASSMETHOD)

    @property
    def receiver_name(self) -> Optional[str]:
        if not self.is_bound:
            return None
        positional = positional_names(self.node.args)
        return positional[0] if positional else None

    @property
    def receiver_style(self) -> bool:
        """Whether the entry point treats its first parameter as the receiver."""
        mode = self.config.extension_mode
        if mode is ExtensionMode.FORCE_EXTENSION:
            return True
        if mode is ExtensionMode.FORCE_PLAIN:
            return False
        return self.is_bound

    # ---- context --------------------------------------------------------

    def position(self, node: Optional[ast.AST] = None) -> SourcePosition:
        return SourcePosition.from_node(
            node if node is not None else self.node, self.filename, self.line_offset
        )

    def free_variables(self) -> Dict[str, Any]:
        """Closure cells and PEP 695 type parameters the body may refer to."""
        values: Dict[str, Any] = {}
        if self.func is None:
            return values
        code = getattr(self.func, '__code__', None)
        closure = getattr(self.func, '__closure__', None) or ()
        if code is not None:
            for name, cell in zip(code.co_freevars, closure):
                try:
                    values[name] = cell.cell_contents
                except ValueError:
                    # Cell not bound yet; the body cannot have used it either
                    continue
        for param in getattr(self.func, '__type_params__', ()):
            values.setdefault(param.__name__, param)
        return values

    # ---- construction ---------------------------------------------------

    @classmethod
    def from_callable(
        cls,
        obj: Any,
        config: Optional[SafeRecursionConfig] = None,
        *,
        owner: Optional[str] = None,
    ) -> 'RecursiveFunction':
        """
        Build from a live function, method, staticmethod or classmethod.

        Raises:
            SourceUnavailableError: if the definition cannot be parsed.
        """
        kind = None
        func = obj
        if isinstance(obj, staticmethod):
            kind, func = FunctionKind.STATICMETHOD, obj.__func__
        elif isinstance(obj, classmethod):
            kind, func = FunctionKind.CLASSMETHOD, obj.__func__
        elif inspect.ismethod(obj):
            func = obj.__func__

        if not inspect.isfunction(func):
            raise SourceUnavailableError(f'{obj!r} is not a Python function')

        node, filename, line_offset = parse_callable(func)

        if owner is None:
            parts = func.__qualname__.split('.')
            if len(parts) >= 2 and parts[-2] != '<locals>':
                owner = parts[-2]
        if kind is None:
            if owner is None:
                kind = FunctionKind.FUNCTION
            else:
                kind = _kind_from_decorators(node)

        return cls(
            node=node,
            config=config or get_config(func) or SafeRecursionConfig(),
            kind=kind,
            owner=owner,
            filename=filename,
            line_offset=line_offset,
            func=func,
            globals=func.__globals__,
            display_name=func.__name__,
        )

    @classmethod
    def from_source(
        cls,
        source: str,
        name: Optional[str] = None,
        config: Optional[SafeRecursionConfig] = None,
        *,
        globals: Optional[Dict[str, Any]] = None,
        filename: str = '<string>',
    ) -> 'RecursiveFunction':
        """Build from the source text of a single module-level function."""
        tree = ast.parse(textwrap.dedent(source), filename=filename)
        if name is None:
            node = next(
                (n for n in tree.body if isinstance(n, (ast.FunctionDef, ast.AsyncFunctionDef))),
                None,
            )
        else:
            node = find_function(tree, name)
        if node is None:
            where = f" {name!r}" if name else ""
            raise SourceUnavailableError(f"No function{where} found in source")
        return cls(
            node=node,
            config=config or SafeRecursionConfig(),
            filename=filename,
            globals=globals,
        )


def _kind_from_decorators(node: ast.AST) -> FunctionKind:
    for decorator in node.decorator_list:
        if isinstance(decorator, ast.Name) and decorator.id in _DECORATOR_KINDS:
            return _DECORATOR_KINDS[decorator.id]
    return FunctionKind.METHOD


@dataclass
class ResolvedCall:
    """A call expression resolved to a group member."""
    target: RecursiveFunction
    receiver: Optional[ast.expr] = None


@dataclass
class RecursionGroup:
    group_id: str
    members: List[RecursiveFunction] = field(default_factory=list)

    @property
    def is_mutual(self) -> bool:
        return bool(self.group_id)

    @property
    def key(self) -> str:
        return self.group_id or self.members[0].name

    @property
    def is_generic(self) -> bool:
        return any(m.type_params for m in self.members)

    def member(self, name: str) -> Optional[RecursiveFunction]:
        for m in self.members:
            if m.name == name:
                return m
        return None

    def resolve_call(
        self, node: ast.Call, caller: RecursiveFunction
    ) -> Optional[ResolvedCall]:
        """Resolve *node* (made inside *caller*) to a member, if it calls one."""
        func = node.func
        if isinstance(func, ast.Name):
            target = self.member(func.id)
            if target is not None and target.kind is FunctionKind.FUNCTION:
                return ResolvedCall(target)
            return None

        if not (isinstance(func, ast.Attribute) and isinstance(func.value, ast.Name)):
            return None
        target = self.member(func.attr)
        if target is None or target.owner is None or target.owner != caller.owner:
            return None
        if target.kind is FunctionKind.FUNCTION:
            return None

        holder = func.value.id
        if holder == caller.receiver_name:
            if target.kind is FunctionKind.STATICMETHOD:
                return ResolvedCall(target)
            if target.kind is FunctionKind.CLASSMETHOD:
                if caller.kind is FunctionKind.CLASSMETHOD:
                    return ResolvedCall(target, ast.Name(id=holder, ctx=ast.Load()))
                receiver = ast.Call(
                    func=ast.Name(id='type', ctx=ast.Load()),
                    args=[ast.Name(id=holder, ctx=ast.Load())],
                    keywords=[],
                )
                return ResolvedCall(target, receiver)
            if caller.kind is FunctionKind.METHOD:
                return ResolvedCall(target, ast.Name(id=holder, ctx=ast.Load()))
            return None

        if holder == caller.owner:
            if target.kind is FunctionKind.CLASSMETHOD:
                return ResolvedCall(target, ast.Name(id=holder, ctx=ast.Load()))
            # Static methods and explicit ``Owner.method(obj, ...)`` calls
            return ResolvedCall(target)
        return None

    def validate(self, sink: DiagnosticSink) -> bool:
        """
        Check group-level invariants.

        Duplicate member names are a hard failure (returns ``False``); a
        single-member mutual group and differing type parameters only warn.
        """
        seen: Dict[str, RecursiveFunction] = {}
        ok = True
        for m in self.members:
            if m.name in seen:
                sink.unsupported_syntax_error(
                    m.position(),
                    f"Group '{self.key}' contains more than one member named '{m.name}'",
                )
                ok = False
            seen[m.name] = m

        if not self.is_mutual:
            return ok

        first = self.members[0]
        if len(self.members) == 1:
            sink.configuration_warning(
                first.position(),
                f"Group '{self.group_id}' has only one member '{first.name}'. "
                f"Remove the group id to generate a simpler simple-recursion form.",
            )
        for m in self.members[1:]:
            if m.type_params != first.type_params:
                sink.configuration_warning(
                    m.position(),
                    f"Group '{self.group_id}': type parameters [{m.type_params}] of "
                    f"'{m.name}' differ from [{first.type_params}] of '{first.name}'",
                )
        return ok


def group_functions(functions: Iterable[RecursiveFunction]) -> List[RecursionGroup]:
    """
    Partition *functions* into recursion groups.

    Functions without a group id each form their own simple group; the others
    are gathered by group id. Order of first encounter is preserved.
    """
    groups: List[RecursionGroup] = []
    by_id: Dict[str, RecursionGroup] = {}
    for fn in functions:
        group_id = fn.config.group_id
        if not group_id:
            groups.append(RecursionGroup(group_id='', members=[fn]))
            continue
        group = by_id.get(group_id)
        if group is None:
            group = by_id[group_id] = RecursionGroup(group_id=group_id)
            groups.append(group)
        group.members.append(fn)
    return groups
