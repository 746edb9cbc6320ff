"""
Tests for the code-generation passes.

Validates:
    1. frame_layout.py        - generated names, frame classes, call-site enum
    2. statement_rewriter.py  - rewrite rules per call-site role
    3. entry_points.py        - runner classes and entry-point bodies
"""

import ast

import pytest

from stacksafe.analysis.call_sites import CallSiteClassifier
from stacksafe.analysis.recursion_group import RecursionGroup, RecursiveFunction
from stacksafe.compiler.entry_points import EntryPointGenerator
from stacksafe.compiler.frame_layout import FrameLayoutBuilder
from stacksafe.compiler.statement_rewriter import StatementRewriter
from stacksafe.config import SafeRecursionConfig
from stacksafe.diagnostics import DiagnosticCollector
from stacksafe.utils import ast_helpers as A
from stacksafe.utils.naming import NameAllocator


# ═══════════════════════════════════════════════════════════════════
#  Test Fixtures: Sample Functions
# ═══════════════════════════════════════════════════════════════════

def fib(n):
    if n < 2:
        return n
    f1 = fib(n - 1)
    f2 = fib(n - 2)
    return f1 + f2


def gcd(a, b):
    if b == 0:
        return a
    return gcd(b, a % b)


def walk(node, out):
    if node is None:
        return
    out.append(node)
    walk(node.left, out)


def countdown(n):
    while n > 0:
        n -= 1
    if n == 0:
        pass


def shadowing(n):
    if n <= 0:
        return 1
    n, m = shadowing(n - 1), n * 10
    return n + m


def find_max(values, lo, hi):
    if hi - lo == 1:
        return values[lo]
    mid = (lo + hi) // 2
    left, right = find_max(values, lo, mid), find_max(values, mid, hi)
    return left if left >= right else right


def accumulate(n):
    total = 0
    if n > 0:
        total += accumulate(n - 1)
    return total


tally = 0


def tally_global(n):
    global tally
    if n == 0:
        return tally
    tally, seen = 7, tally_global(n - 1)
    return seen


def in_operand(n):
    if n == 0:
        return 0
    return 1 + in_operand(n - 1)


def is_odd(n):
    if n == 0:
        return False
    return is_even(n - 1)


def is_even(n):
    if n == 0:
        return True
    return is_odd(n - 1)


def prepare(*funcs, group_id=''):
    members = [
        RecursiveFunction.from_callable(f, SafeRecursionConfig(group_id=group_id))
        for f in funcs
    ]
    group = RecursionGroup(group_id, members)
    sink = DiagnosticCollector()
    names = NameAllocator(A.collect_identifiers(m.node for m in members))
    layout = FrameLayoutBuilder(sink).build(group, names)
    return group, layout, sink


def rewrite(*funcs, group_id=''):
    group, layout, sink = prepare(*funcs, group_id=group_id)
    classifier = CallSiteClassifier(group, sink)
    rewriter = StatementRewriter(layout, sink)
    return [
        rewriter.rewrite(m, classifier.classify(m)) for m in group.members
    ]


def unparse(node):
    return ast.unparse(ast.fix_missing_locations(node))


# ═══════════════════════════════════════════════════════════════════
#  Frame layout
# ═══════════════════════════════════════════════════════════════════

class TestFrameLayout:

    def test_simple_group_names(self):
        _, layout, _ = prepare(fib)
        frame = layout.frames['fib']
        assert layout.runner_name == 'fib_Runner'
        assert layout.factory_name == '_sr_build_fib'
        assert layout.enum_name is None and layout.dispatch_name is None
        assert frame.class_name == 'fib_Frame'
        assert frame.step_name == 'fib_step'
        assert frame.slot_name == 'fib_result'
        assert frame.fields == ['n']

    def test_void_member_has_no_slot(self):
        _, layout, _ = prepare(walk)
        assert not layout.frames['walk'].has_slot

    def test_mutual_group_names(self):
        _, layout, _ = prepare(is_odd, is_even, group_id='parity')
        assert layout.enum_name == 'parity_CallSite'
        assert layout.dispatch_name == 'parity_Dispatch'
        assert [f.site_name for f in layout.frames.values()] == ['IS_ODD', 'IS_EVEN']
        assert layout.frames['is_even'].wrap_name == 'from_is_even'

    def test_frame_class_source(self):
        _, layout, _ = prepare(find_max)
        source = '\n'.join(
            unparse(node) for node in layout.frames['find_max'].build(layout.support)
        )
        assert 'def find_max_Frame_new(_sr_cls, values, lo, hi):' in source
        assert 'return _sr_make_frame(_sr_cls, (values, lo, hi))' in source
        assert 'class find_max_Frame(_sr_CallFrame):' in source
        assert "_fields = ('values', 'lo', 'hi')" in source

    def test_enum_and_dispatch_declarations(self):
        _, layout, _ = prepare(is_odd, is_even, group_id='parity')
        source = '\n'.join(unparse(node) for node in layout.declarations())
        assert 'class parity_CallSite(_sr_IntEnum):' in source
        assert 'IS_ODD = 0' in source and 'IS_EVEN = 1' in source
        assert 'class parity_Dispatch(_sr_DispatchFrame):' in source
        assert 'def from_is_odd(_sr_cls, _sr_frame):' in source

    def test_support_imports(self):
        _, simple, _ = prepare(accumulate)
        _, mutual, _ = prepare(is_odd, is_even, group_id='parity')
        simple_source = [unparse(node) for node in simple.imports()]
        mutual_source = [unparse(node) for node in mutual.imports()]
        assert 'import operator as _sr_operator' in simple_source
        assert not any('IntEnum' in line for line in simple_source)
        assert 'from enum import IntEnum as _sr_IntEnum' in mutual_source

    def test_names_avoid_user_identifiers(self):
        source = '''
        def clash(n, clash_Frame=0, _sr_runner=None):
            if n == 0:
                return clash_Frame
            return clash(n - 1, clash_Frame, _sr_runner)
        '''
        function = RecursiveFunction.from_source(source)
        names = NameAllocator(A.collect_identifiers([function.node]))
        layout = FrameLayoutBuilder(DiagnosticCollector()).build(
            RecursionGroup('', [function]), names
        )
        assert layout.frames['clash'].class_name == 'clash_Frame_1'
        assert layout.support.runner == '_sr_runner_1'

    def test_invalid_group_has_no_layout(self):
        _, layout, sink = prepare(fib, fib, group_id='twice')
        assert layout is None
        assert sink.has_errors


# ═══════════════════════════════════════════════════════════════════
#  Statement rewriting
# ═══════════════════════════════════════════════════════════════════

class TestStatementRewriter:

    def test_assignment_sites(self):
        (step,) = rewrite(fib)
        source = unparse(step)
        assert source.startswith('def fib_step(_sr_runner, _sr_frame):')
        assert 'yield fib_Frame(n - 1)' in source
        assert 'f1 = _sr_runner.fib_result' in source
        assert '_sr_runner.fib_result = f1 + f2' in source
        assert 'fib(' not in source.replace('fib_Frame(', '')

    def test_return_of_call(self):
        (step,) = rewrite(gcd)
        lines = [line.strip() for line in unparse(step).splitlines()]
        index = lines.index('yield gcd_Frame(b, a % b)')
        assert lines[index + 1] == 'return'

    def test_void_calls(self):
        (step,) = rewrite(walk)
        source = unparse(step)
        assert 'yield walk_Frame(node.left, out)' in source
        assert 'walk_result' not in source

    def test_non_recursive_body_is_still_a_generator(self):
        (step,) = rewrite(countdown)
        # Right after unpacking the frame, never behind a trailing return
        assert unparse(step.body[1]) == 'yield from ()'
        assert sum('yield' in unparse(node) for node in step.body) == 1

    def test_augmented_assignment(self):
        (step,) = rewrite(accumulate)
        lines = [line.strip() for line in unparse(step).splitlines()]
        index = lines.index('_sr_value = total')
        assert lines[index + 1] == 'yield accumulate_Frame(n - 1)'
        assert lines[index + 2] == \
            'total = _sr_operator.iadd(_sr_value, _sr_runner.accumulate_result)'

    def test_falling_off_the_end_sets_slot(self):
        source = '''
        def maybe(n):
            if n > 0:
                return maybe(n - 1)
        '''
        function = RecursiveFunction.from_source(source)
        group = RecursionGroup('', [function])
        sink = DiagnosticCollector()
        names = NameAllocator(A.collect_identifiers([function.node]))
        layout = FrameLayoutBuilder(sink).build(group, names)
        report = CallSiteClassifier(group, sink).classify(function)
        step = StatementRewriter(layout, sink).rewrite(function, report)
        assert unparse(step.body[-1]) == '_sr_runner.maybe_result = None'

    def test_multi_declaration_without_conflicts(self):
        (step,) = rewrite(find_max)
        source = unparse(step)
        assert source.index('yield find_max_Frame(values, lo, mid)') < \
            source.index('yield find_max_Frame(values, mid, hi)')
        assert 'left = _sr_runner.find_max_result' in source
        assert '_sr_value' not in source

    def test_multi_declaration_with_shadowing_uses_temporaries(self):
        (step,) = rewrite(shadowing)
        source = unparse(step)
        assert '_sr_value = _sr_runner.shadowing_result' in source
        assert '_sr_value_1 = n * 10' in source
        assert 'n, m = (_sr_value, _sr_value_1)' in source

    def test_multi_declaration_with_global_target_uses_temporaries(self):
        (step,) = rewrite(tally_global)
        source = unparse(step)
        assert '_sr_value = 7' in source
        assert '_sr_value_1 = _sr_runner.tally_global_result' in source
        assert 'tally, seen = (_sr_value, _sr_value_1)' in source

    def test_mutual_calls_are_wrapped(self):
        odd, even = rewrite(is_odd, is_even, group_id='parity')
        source = unparse(odd)
        assert 'yield parity_Dispatch.from_is_even(is_even_Frame(n - 1))' in source
        assert '_sr_runner.is_odd_result = _sr_runner.is_even_result' in source

    def test_failed_report_gives_no_step(self):
        (step,) = rewrite(in_operand)
        assert step is None

    def test_original_tree_untouched(self):
        group, layout, sink = prepare(fib)
        function = group.members[0]
        before = ast.dump(function.node)
        report = CallSiteClassifier(group, sink).classify(function)
        StatementRewriter(layout, sink).rewrite(function, report)
        assert ast.dump(function.node) == before


# ═══════════════════════════════════════════════════════════════════
#  Runner and entry points
# ═══════════════════════════════════════════════════════════════════

class TestEntryPointGenerator:

    def test_simple_runner(self):
        _, layout, sink = prepare(fib)
        source = unparse(EntryPointGenerator(layout, sink).build_runner())
        assert 'class fib_Runner(_sr_Trampoline):' in source
        assert 'fib_result = None' in source
        assert '_compute = fib_step' in source

    def test_mutual_runner_dispatch(self):
        _, layout, sink = prepare(is_odd, is_even, group_id='parity')
        source = unparse(EntryPointGenerator(layout, sink).build_runner())
        assert '_sr_site, _sr_inner = _sr_frame' in source
        assert 'if _sr_site is parity_CallSite.IS_EVEN:' in source
        assert 'return is_even_step(_sr_runner, _sr_inner)' in source
        assert "raise _sr_BadDispatchError(_sr_site, 'parity')" in source

    def test_entry_point_body(self):
        _, layout, sink = prepare(fib)
        (entry,) = EntryPointGenerator(layout, sink).build_entry_points()
        assert entry.public_name == 'fib_safe'
        assert entry.local_name == 'fib_safe'
        source = unparse(entry.node)
        assert '_sr_runner = fib_Runner()' in source
        assert '_sr_runner.run(fib_Frame(n))' in source
        assert 'return _sr_runner.fib_result' in source

    def test_void_entry_point_returns_nothing(self):
        _, layout, sink = prepare(walk)
        (entry,) = EntryPointGenerator(layout, sink).build_entry_points()
        assert not any(isinstance(node, ast.Return) for node in entry.node.body)

    def test_hidden_members_get_no_entry_point(self):
        members = [
            RecursiveFunction.from_callable(
                is_odd, SafeRecursionConfig(group_id='parity', expose_as_entry_point=False)
            ),
            RecursiveFunction.from_callable(is_even, SafeRecursionConfig(group_id='parity')),
        ]
        group = RecursionGroup('parity', members)
        sink = DiagnosticCollector()
        names = NameAllocator(A.collect_identifiers(m.node for m in members))
        layout = FrameLayoutBuilder(sink).build(group, names)
        generator = EntryPointGenerator(layout, sink)
        assert [m.name for m in generator.exposed_members()] == ['is_even']
        (entry,) = generator.build_entry_points()
        assert 'parity_Dispatch.from_is_even(is_even_Frame(n))' in unparse(entry.node)

    def test_single_member_always_exposed(self):
        function = RecursiveFunction.from_callable(
            fib, SafeRecursionConfig(expose_as_entry_point=False)
        )
        group = RecursionGroup('', [function])
        sink = DiagnosticCollector()
        names = NameAllocator(A.collect_identifiers([function.node]))
        layout = FrameLayoutBuilder(sink).build(group, names)
        assert len(EntryPointGenerator(layout, sink).exposed_members()) == 1

    def test_outputs(self):
        _, layout, sink = prepare(is_odd, is_even, group_id='parity')
        generator = EntryPointGenerator(layout, sink)
        outputs = generator.outputs(generator.build_entry_points())
        assert outputs['runner'] == 'parity_Runner'
        assert outputs['frame:is_odd'] == 'is_odd_Frame'
        assert outputs['call_sites'] == 'parity_CallSite'
        assert outputs['entry:is_even'] == 'is_even_safe'
