"""
Safe-Recursion Generator
========================

Drives the whole pipeline for a batch of marked functions:

    functions ──group──► RecursionGroup ──layout──► GroupLayout
                              │                          │
                              ▼                          ▼
                     CallSiteClassifier ──report──► StatementRewriter
                                                         │
                                                         ▼
                 EntryPointGenerator ──► factory module ──► compile + exec
                                                         │
                                                         ▼
                                                  GeneratedGroup

Each group is emitted as one factory function (the readable artifact is kept
in :attr:`GeneratedGroup.source`) that is executed against the original
module globals; closure cells and type parameters of the originals become
factory arguments, so the generated code sees exactly the names the original
saw. The user namespace is not touched until :meth:`SafeRecursionGenerator.build`
installs the entry points.

Groups are isolated from one another: a hard failure or an unexpected
exception while processing one group is reported as a diagnostic and the
remaining groups are still generated.

Usage:
    result = build(my_module)                 # install next to the originals
    fib_safe = transform(fib)                 # single function
    entries = transform_group(is_odd, is_even)
"""

import ast
import linecache
import logging
import traceback
import types
from collections import defaultdict
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from stacksafe.analysis.call_sites import CallSiteClassifier
from stacksafe.analysis.recursion_group import (
    FunctionKind,
    RecursionGroup,
    RecursiveFunction,
    group_functions,
)
from stacksafe.compiler.entry_points import EntryPoint, EntryPointGenerator
from stacksafe.compiler.frame_layout import FrameLayoutBuilder, GroupLayout
from stacksafe.compiler.statement_rewriter import StatementRewriter
from stacksafe.config import MARKER_ATTRIBUTE, SafeRecursionConfig, get_config
from stacksafe.diagnostics import Diagnostic, DiagnosticCollector, DiagnosticSink
from stacksafe.errors import SourceUnavailableError, TransformationError
from stacksafe.utils import ast_helpers as A
from stacksafe.utils.naming import NameAllocator

logger = logging.getLogger(__name__)

ORIGINAL_ATTRIBUTE = '__stacksafe_original__'

# Builtins referenced by generated code; never handed out as generated names
_GENERATED_BUILTINS = ('classmethod', 'type')

_MISSING = object()

FunctionLike = Union[RecursiveFunction, Callable]


# ═══════════════════════════════════════════════════════════════════════════
# Results
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class GeneratedGroup:
    """Everything produced for one recursion group."""
    group: RecursionGroup
    source: str
    entry_points: Dict[str, Callable] = field(default_factory=dict)
    entry_names: Dict[str, str] = field(default_factory=dict)
    runner: Optional[type] = None
    frames: Dict[str, type] = field(default_factory=dict)
    call_sites: Optional[type] = None
    dispatch: Optional[type] = None

    @property
    def key(self) -> str:
        return self.group.key

    def entry_point(self, member_name: str) -> Callable:
        """Entry point generated for member *member_name*."""
        return self.entry_points[self.entry_names[member_name]]


@dataclass
class GenerationResult:
    collector: DiagnosticCollector = field(default_factory=DiagnosticCollector)
    groups: List[GeneratedGroup] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def diagnostics(self) -> List[Diagnostic]:
        return self.collector.diagnostics

    @property
    def errors(self) -> List[Diagnostic]:
        return self.collector.errors

    @property
    def succeeded(self) -> bool:
        return not self.failed

    @property
    def entry_points(self) -> Dict[str, Callable]:
        merged: Dict[str, Callable] = {}
        for generated in self.groups:
            merged.update(generated.entry_points)
        return merged

    def group(self, key: str) -> Optional[GeneratedGroup]:
        for generated in self.groups:
            if generated.key == key:
                return generated
        return None

    def entry_point(self, name: str) -> Callable:
        """Look up an entry point by member name or by its published name."""
        for generated in self.groups:
            if name in generated.entry_names:
                return generated.entry_point(name)
            if name in generated.entry_points:
                return generated.entry_points[name]
        raise KeyError(name)


# ═══════════════════════════════════════════════════════════════════════════
# Generator
# ═══════════════════════════════════════════════════════════════════════════

class SafeRecursionGenerator:
    """
    Generates stack-safe entry points for marked functions.

    Usage:
        generator = SafeRecursionGenerator(emit_logs=True)
        result = generator.generate([fib, is_odd, is_even])
        fib_safe = result.entry_point('fib')
        print(result.group('fib').source)
    """

    def __init__(
        self,
        sink: Optional[DiagnosticSink] = None,
        *,
        emit_logs: bool = False,
    ):
        """
        Args:
            sink:      Extra receiver for every diagnostic that is kept.
            emit_logs: Keep info-level progress diagnostics too.
        """
        self.sink = sink
        self.emit_logs = emit_logs
        self.stats: Dict[str, int] = defaultdict(int)

    # ───────────────────────────────────────────────────────────────
    #  Public API
    # ───────────────────────────────────────────────────────────────

    def generate(
        self,
        functions: Iterable[FunctionLike],
        *,
        owner: Optional[str] = None,
    ) -> GenerationResult:
        """Generate every group formed by *functions*; nothing is installed."""
        result = GenerationResult(collector=self._new_collector())
        members = self._coerce_all(functions, result, owner)
        self._generate_into(result, members)
        return result

    def build(self, container: Any) -> GenerationResult:
        """
        Generate all marked functions of *container* and install the entry
        points next to them.

        *container* is a module, a class or a mutable mapping. Groups whose
        entry points cannot be installed are reported and left out.
        """
        result = GenerationResult(collector=self._new_collector())
        owner = container.__name__ if isinstance(container, type) else None
        marked = [obj for _, obj in find_marked(container)]
        members = self._coerce_all(marked, result, owner)

        if not is_open_for_extension(container):
            for member in members:
                result.collector.unsupported_syntax_error(
                    member.position(),
                    f"Cannot add '{member.entry_point_name}' to {_describe(container)}: "
                    f"it is not open for extension",
                )
            result.failed.extend(g.key for g in group_functions(members))
            return result

        self._generate_into(result, members)
        for generated in list(result.groups):
            if not self._install(container, generated, result.collector):
                result.groups.remove(generated)
                result.failed.append(generated.key)
        return result

    def generate_group(
        self, group: RecursionGroup, sink: DiagnosticSink
    ) -> Optional[GeneratedGroup]:
        """Run all passes for one group; ``None`` after a hard failure."""
        names = NameAllocator(A.collect_identifiers(m.node for m in group.members))
        names.reserve(*_GENERATED_BUILTINS)

        layout = FrameLayoutBuilder(sink).build(group, names)
        if layout is None:
            return None

        classifier = CallSiteClassifier(group, sink)
        reports = {}
        for member in group.members:
            report = classifier.classify(member)
            sink.log(member.position(), report.summary())
            reports[member.name] = report
            self.stats['call_sites'] += len(report.sites)
        if any(r.has_critical_failure for r in reports.values()):
            sink.log(
                group.members[0].position(),
                f"Unsupported code found for '{group.key}'. Abort processing.",
            )
            return None

        rewriter = StatementRewriter(layout, sink)
        steps = [rewriter.rewrite(m, reports[m.name]) for m in group.members]

        entry_generator = EntryPointGenerator(layout, sink)
        runner = entry_generator.build_runner()
        entries = entry_generator.build_entry_points()
        outputs = entry_generator.outputs(entries)

        free = self._free_variables(group)
        module = self._assemble(layout, steps, runner, entries, outputs, free)
        source = ast.unparse(ast.fix_missing_locations(module))
        objects = self._execute(group, layout, source, free)
        generated = self._collect(group, layout, source, entries, outputs, objects)

        self.stats['functions'] += len(group.members)
        self.stats['entry_points'] += len(entries)
        sink.log(
            group.members[0].position(),
            f"Generated '{group.key}' with {len(entries)} entry point(s): "
            f"{', '.join(generated.entry_points)}",
        )
        return generated

    # ───────────────────────────────────────────────────────────────
    #  Batch helpers
    # ───────────────────────────────────────────────────────────────

    def _new_collector(self) -> DiagnosticCollector:
        return DiagnosticCollector(emit_logs=self.emit_logs, forward_to=self.sink)

    def _coerce_all(
        self,
        functions: Iterable[FunctionLike],
        result: GenerationResult,
        owner: Optional[str],
    ) -> List[RecursiveFunction]:
        members = []
        for item in functions:
            if isinstance(item, RecursiveFunction):
                members.append(item)
                continue
            try:
                members.append(RecursiveFunction.from_callable(item, owner=owner))
            except SourceUnavailableError as exc:
                result.collector.unsupported_syntax_error(None, str(exc))
                result.failed.append(getattr(item, '__name__', repr(item)))
        return members

    def _generate_into(
        self, result: GenerationResult, members: List[RecursiveFunction]
    ) -> None:
        groups = group_functions(members)
        simple = sum(1 for g in groups if not g.is_mutual)
        result.collector.log(
            None,
            f"Found {simple} function(s) for simple recursion and "
            f"{len(groups) - simple} group(s) for mutual recursion",
        )
        for group in groups:
            try:
                generated = self.generate_group(group, result.collector)
            except Exception as exc:
                details = ''.join(traceback.format_exception(exc))
                result.collector.internal_error(
                    group.members[0].position(),
                    f"Processing '{group.key}' resulted in an internal error: {details}",
                )
                self.stats['internal_errors'] += 1
                generated = None

            if generated is None:
                result.failed.append(group.key)
                self.stats['groups_failed'] += 1
            else:
                result.groups.append(generated)
                self.stats['groups_generated'] += 1

    # ───────────────────────────────────────────────────────────────
    #  Emission
    # ───────────────────────────────────────────────────────────────

    @staticmethod
    def _free_variables(group: RecursionGroup) -> Dict[str, Any]:
        free: Dict[str, Any] = {}
        for member in group.members:
            for name, value in member.free_variables().items():
                free.setdefault(name, value)
        return free

    @staticmethod
    def _assemble(
        layout: GroupLayout,
        steps: List[ast.FunctionDef],
        runner: ast.ClassDef,
        entries: List[EntryPoint],
        outputs: Dict[str, str],
        free: Dict[str, Any],
    ) -> ast.Module:
        body: List[ast.stmt] = layout.imports() + layout.declarations()
        body += steps
        body.append(runner)
        body += [entry.node for entry in entries]
        body.append(ast.Return(value=ast.Dict(
            keys=[ast.Constant(value=key) for key in outputs],
            values=[A.load(name) for name in outputs.values()],
        )))
        factory = A.make_function(
            layout.factory_name, A.simple_arguments(*free), body
        )
        return ast.Module(body=[factory], type_ignores=[])

    @staticmethod
    def _execute(
        group: RecursionGroup,
        layout: GroupLayout,
        source: str,
        free: Dict[str, Any],
    ) -> Dict[str, Any]:
        filename = f'<stacksafe {group.key}>'
        code = compile(source, filename, 'exec')
        # Lets tracebacks through generated code show its lines
        linecache.cache[filename] = (
            len(source), None, source.splitlines(True), filename
        )
        namespace = next(
            (m.globals for m in group.members if m.globals is not None), None
        )
        if namespace is None:
            namespace = {'__name__': 'stacksafe.generated'}
        scratch: Dict[str, Any] = {}
        exec(code, namespace, scratch)
        return scratch[layout.factory_name](**free)

    @staticmethod
    def _collect(
        group: RecursionGroup,
        layout: GroupLayout,
        source: str,
        entries: List[EntryPoint],
        outputs: Dict[str, str],
        objects: Dict[str, Any],
    ) -> GeneratedGroup:
        generated = GeneratedGroup(
            group=group,
            source=source,
            runner=objects['runner'],
            call_sites=objects.get('call_sites'),
            dispatch=objects.get('dispatch'),
        )
        for name, frame in layout.frames.items():
            frame_class = objects[f'frame:{name}']
            if frame.placeholder_defaults:
                _copy_defaults(frame.function.func, frame_class.__new__)
            generated.frames[name] = frame_class

        for entry in entries:
            function = objects[f'entry:{entry.function.name}']
            _copy_metadata(entry.function, function, entry.public_name)
            generated.entry_points[entry.public_name] = function
            generated.entry_names[entry.function.name] = entry.public_name
        return generated

    # ───────────────────────────────────────────────────────────────
    #  Installation
    # ───────────────────────────────────────────────────────────────

    @staticmethod
    def _install(
        container: Any, generated: GeneratedGroup, sink: DiagnosticSink
    ) -> bool:
        placements = []
        for member_name, public in generated.entry_names.items():
            member = generated.group.member(member_name)
            name = public
            if isinstance(container, type):
                name = A.mangle(public, container.__name__)
            existing = _lookup(container, name)
            if existing is not _MISSING and not _is_generated(existing):
                sink.unsupported_syntax_error(
                    member.position(),
                    f"Cannot add '{name}' to {_describe(container)}: "
                    f"the name is already taken",
                )
                return False
            placements.append(
                (name, _bind(container, member, generated.entry_points[public]))
            )

        for name, value in placements:
            if isinstance(container, Mapping):
                container[name] = value
            else:
                setattr(container, name, value)
            logger.debug(f"Installed '{name}' on {_describe(container)}")
        return True


# ═══════════════════════════════════════════════════════════════════════════
# Containers
# ═══════════════════════════════════════════════════════════════════════════

def find_marked(container: Any) -> List[tuple]:
    """``(name, object)`` pairs of marked functions defined in *container*."""
    if isinstance(container, Mapping):
        namespace = container
    else:
        namespace = vars(container)
    module_name = container.__name__ if isinstance(container, types.ModuleType) else None

    found = []
    for name, obj in list(namespace.items()):
        if get_config(obj) is None:
            continue
        func = obj.__func__ if isinstance(obj, (staticmethod, classmethod)) else obj
        if not isinstance(func, types.FunctionType):
            continue
        if module_name is not None and func.__module__ != module_name:
            continue
        found.append((name, obj))
    return found


def is_open_for_extension(container: Any) -> bool:
    """Whether new attributes/items can be added to *container*."""
    if isinstance(container, types.ModuleType):
        return True
    if isinstance(container, type):
        return type(container).__setattr__ is type.__setattr__
    return isinstance(container, MutableMapping)


def _describe(container: Any) -> str:
    if isinstance(container, types.ModuleType):
        return f"module '{container.__name__}'"
    if isinstance(container, type):
        return f"class '{container.__qualname__}'"
    return f'{type(container).__name__} namespace'


def _lookup(container: Any, name: str) -> Any:
    if isinstance(container, Mapping):
        return container.get(name, _MISSING)
    return vars(container).get(name, _MISSING)


def _is_generated(obj: Any) -> bool:
    func = obj.__func__ if isinstance(obj, (staticmethod, classmethod)) else obj
    return getattr(func, ORIGINAL_ATTRIBUTE, None) is not None


def _bind(container: Any, member: RecursiveFunction, entry: Callable) -> Any:
    if not isinstance(container, type):
        return entry
    if member.receiver_style:
        if member.kind is FunctionKind.CLASSMETHOD:
            return classmethod(entry)
        return entry
    return staticmethod(entry)


def _copy_defaults(original: Callable, target: Callable) -> None:
    target.__defaults__ = original.__defaults__
    target.__kwdefaults__ = (
        dict(original.__kwdefaults__) if original.__kwdefaults__ else None
    )


def _copy_metadata(function: RecursiveFunction, entry: Callable, public: str) -> None:
    """Give *entry* the identity of the function it replaces."""
    entry.__name__ = public
    scope, _, _ = function.qualname.rpartition('.')
    entry.__qualname__ = f'{scope}.{public}' if scope else public

    original = function.func
    if original is None:
        return
    _copy_defaults(original, entry)
    entry.__module__ = original.__module__
    entry.__doc__ = original.__doc__
    entry.__annotations__ = dict(original.__annotations__)
    for key, value in vars(original).items():
        if key != MARKER_ATTRIBUTE:
            setattr(entry, key, value)
    setattr(entry, ORIGINAL_ATTRIBUTE, original)


# ═══════════════════════════════════════════════════════════════════════════
# Functional interface
# ═══════════════════════════════════════════════════════════════════════════

def build(
    container: Any,
    *,
    sink: Optional[DiagnosticSink] = None,
    emit_logs: bool = False,
) -> GenerationResult:
    """Generate and install entry points for every marked function in *container*."""
    return SafeRecursionGenerator(sink, emit_logs=emit_logs).build(container)


def transform(
    func: Callable,
    *,
    sink: Optional[DiagnosticSink] = None,
    emit_logs: bool = False,
    **options: Any,
) -> Callable:
    """
    Return the stack-safe entry point of a single recursive function.

    Marker options of *func* (if any) are used, overridden by *options*.

    Raises:
        TransformationError: if the function cannot be transformed.
    """
    base = get_config(func) or SafeRecursionConfig()
    config = base.with_options(**options)
    name = getattr(func, '__name__', repr(func))
    try:
        function = RecursiveFunction.from_callable(func, config)
    except SourceUnavailableError as exc:
        raise TransformationError(str(exc)) from exc

    result = SafeRecursionGenerator(sink, emit_logs=emit_logs).generate([function])
    if not result.groups:
        raise TransformationError(
            f"Could not generate a stack-safe version of '{name}'", result.diagnostics
        )
    return result.groups[0].entry_point(function.name)


def transform_group(
    *funcs: Callable,
    group_id: Optional[str] = None,
    sink: Optional[DiagnosticSink] = None,
    emit_logs: bool = False,
) -> Dict[str, Callable]:
    """
    Transform mutually recursive functions together.

    All *funcs* are placed in one group (their marker group id, *group_id*,
    or one derived from their names). Returns ``{original name: entry point}``
    for every exposed member.

    Raises:
        TransformationError: if the group cannot be transformed.
    """
    members = []
    for func in funcs:
        try:
            members.append(RecursiveFunction.from_callable(func))
        except SourceUnavailableError as exc:
            raise TransformationError(str(exc)) from exc

    shared = group_id or next(
        (m.config.group_id for m in members if m.config.group_id), None
    ) or '_'.join(m.name for m in members)
    for member in members:
        member.config = member.config.with_options(group_id=shared)

    result = SafeRecursionGenerator(sink, emit_logs=emit_logs).generate(members)
    generated = result.group(shared)
    if generated is None or not result.succeeded:
        raise TransformationError(
            f"Could not generate group '{shared}'", result.diagnostics
        )
    return {
        generated.group.member(name).display_name: generated.entry_point(name)
        for name in generated.entry_names
    }
