"""
Tests for recursion groups and the call-site classifier.

Validates:
    1. recursion_group.py  - parsing, function kinds, grouping, call resolution,
                             group validation warnings
    2. call_sites.py       - role classification, hard failures, warnings,
                             idempotence
"""

import ast

import pytest

from stacksafe.analysis.call_sites import CallSiteClassifier, CallSiteRole
from stacksafe.analysis.recursion_group import (
    FunctionKind,
    RecursionGroup,
    RecursiveFunction,
    group_functions,
)
from stacksafe.config import SafeRecursionConfig, safe_recursion
from stacksafe.diagnostics import DiagnosticCollector, DiagnosticKind
from stacksafe.errors import SourceUnavailableError


# ═══════════════════════════════════════════════════════════════════
#  Test Fixtures: Sample Functions
# ═══════════════════════════════════════════════════════════════════

def gcd(a, b):
    if b == 0:
        return a
    return gcd(b, a % b)


def fib(n):
    if n < 2:
        return n
    f1 = fib(n - 1)
    f2 = fib(n - 2)
    return f1 + f2


def walk(node, out):
    if node is None:
        return
    out.append(node)
    walk(node.left, out)
    walk(node.right, out)


def declare_many(n):
    if n <= 0:
        return 0
    a, b, c = 1, declare_many(n - 1), 2
    return a + b + c


def annotated(n):
    if n <= 0:
        return 0
    rest: int = annotated(n - 1)
    return rest + 1


def accumulate(n):
    total = 0
    if n > 0:
        total += accumulate(n - 1)
    return total + n


def in_condition(n):
    if n > 0 and in_condition(n - 1) > 0:
        return 1
    return 0


def in_operand(n):
    if n == 0:
        return 0
    return 1 + in_operand(n - 1)


def in_lambda(n):
    later = lambda: in_lambda(n - 1)
    return later


def in_comprehension(n):
    return [in_comprehension(k) for k in range(n)]


def in_for_header(n):
    for item in in_for_header(n - 1):
        pass
    return [n]


def in_while(n):
    while in_while(n - 1):
        n -= 1
    return n


def in_with(n):
    with in_with(n - 1):
        pass


def in_match(n):
    match in_match(n - 1):
        case 0:
            return 1
        case _:
            return 0


def in_walrus(n):
    if (y := in_walrus(n - 1)) > 0:
        return y
    return n


def augmented_attribute(box, n):
    if n > 0:
        box.total += augmented_attribute(box, n - 1)
    return box.total


def with_generator(n):
    yield n


async def with_await(n):
    return n


def with_nonlocal_helper():
    count = 0

    def counting(n):
        nonlocal count
        count += 1
        if n == 0:
            return count
        rest = counting(n - 1)
        return rest
    return counting


def with_raise(n):
    if n < 0:
        raise ValueError(n)
    if n == 0:
        return 0
    rest = with_raise(n - 1)
    return rest


def with_handlers(n):
    if n == 0:
        return 0
    try:
        rest = with_handlers(n - 1)
    except RecursionError:
        rest = -1
    finally:
        n = n
    return rest


def with_nested_return(n):
    def helper():
        return 42
    if n == 0:
        return helper()
    value = with_nested_return(n - 1)
    return value


def calls_other(n):
    other = abs(n)
    if n == 0:
        return other
    result = calls_other(n - 1)
    return result


def is_odd(n):
    if n == 0:
        return False
    even = is_even(n - 1)
    return even


def is_even(n):
    if n == 0:
        return True
    odd = is_odd(n - 1)
    return odd


class Walker:
    def __init__(self):
        self.seen = []

    def visit(self, n):
        if n == 0:
            return 0
        self.seen.append(n)
        below = self.visit(n - 1)
        return below + 1

    @staticmethod
    def halve(n):
        if n <= 1:
            return 0
        steps = Walker.halve(n // 2)
        return steps + 1

    @classmethod
    def count(cls, n):
        if n == 0:
            return 0
        rest = cls.count(n - 1)
        return rest + 1

    def uses_super(self, n):
        if n == 0:
            return super().__repr__()
        rest = self.uses_super(n - 1)
        return rest


def classify(func, group_id=''):
    function = RecursiveFunction.from_callable(func)
    group = RecursionGroup(group_id, [function])
    sink = DiagnosticCollector()
    report = CallSiteClassifier(group, sink).classify(function)
    return report, sink


# ═══════════════════════════════════════════════════════════════════
#  Recursive functions
# ═══════════════════════════════════════════════════════════════════

class TestRecursiveFunction:

    def test_from_callable(self):
        function = RecursiveFunction.from_callable(fib)
        assert function.name == 'fib'
        assert function.kind is FunctionKind.FUNCTION
        assert function.owner is None
        assert function.params == ['n']
        assert function.has_result
        assert function.func is fib
        assert function.filename.endswith('test_analysis.py')
        assert function.position().lineno == fib.__code__.co_firstlineno

    def test_void_function_has_no_result(self):
        assert not RecursiveFunction.from_callable(walk).has_result

    def test_nested_return_does_not_count(self):
        source = '''
        def outer(n):
            def inner():
                return 1
            outer(n - 1)
        '''
        assert not RecursiveFunction.from_source(source).has_result

    def test_marker_config_is_picked_up(self):
        @safe_recursion(group_id='g')
        def marked(n):
            return n
        assert RecursiveFunction.from_callable(marked).config.group_id == 'g'

    def test_explicit_config_wins(self):
        config = SafeRecursionConfig(access='private')
        assert RecursiveFunction.from_callable(fib, config).config is config

    def test_method_kinds(self):
        visit = RecursiveFunction.from_callable(Walker.visit)
        halve = RecursiveFunction.from_callable(vars(Walker)['halve'])
        count = RecursiveFunction.from_callable(Walker.count)
        assert (visit.kind, visit.owner) == (FunctionKind.METHOD, 'Walker')
        assert halve.kind is FunctionKind.STATICMETHOD
        assert count.kind is FunctionKind.CLASSMETHOD
        assert visit.receiver_name == 'self'
        assert count.receiver_name == 'cls'
        assert halve.receiver_name is None

    def test_static_kind_from_decorator(self):
        assert RecursiveFunction.from_callable(Walker.halve).kind is FunctionKind.STATICMETHOD

    def test_receiver_style_follows_extension_mode(self):
        visit = RecursiveFunction.from_callable(
            Walker.visit, SafeRecursionConfig(extension_mode='force-plain')
        )
        plain = RecursiveFunction.from_callable(
            fib, SafeRecursionConfig(extension_mode='force-extension')
        )
        assert not visit.receiver_style
        assert plain.receiver_style
        assert RecursiveFunction.from_callable(Walker.visit).receiver_style

    def test_local_function_has_no_owner(self):
        def local(n):
            return n
        function = RecursiveFunction.from_callable(local)
        assert function.owner is None
        assert function.kind is FunctionKind.FUNCTION

    def test_free_variables(self):
        counting = with_nonlocal_helper()
        free = RecursiveFunction.from_callable(counting).free_variables()
        assert free['count'] == 0
        assert free['counting'] is counting

    def test_source_unavailable(self):
        with pytest.raises(SourceUnavailableError):
            RecursiveFunction.from_callable(len)

    def test_from_source(self):
        function = RecursiveFunction.from_source(
            'def twice(n):\n    return 2 * n\n', filename='<snippet>'
        )
        assert function.name == 'twice'
        assert function.func is None
        assert function.position().filename == '<snippet>'

    def test_from_source_missing_function(self):
        with pytest.raises(SourceUnavailableError, match='nope'):
            RecursiveFunction.from_source('x = 1', name='nope')


# ═══════════════════════════════════════════════════════════════════
#  Groups
# ═══════════════════════════════════════════════════════════════════

class TestRecursionGroup:

    def _members(self, *pairs):
        return [
            RecursiveFunction.from_callable(f, SafeRecursionConfig(group_id=g))
            for f, g in pairs
        ]

    def test_grouping_preserves_first_encounter(self):
        groups = group_functions(self._members(
            (fib, ''), (is_odd, 'parity'), (gcd, ''), (is_even, 'parity'),
        ))
        assert [g.key for g in groups] == ['fib', 'parity', 'gcd']
        assert [m.name for m in groups[1].members] == ['is_odd', 'is_even']
        assert groups[1].is_mutual and not groups[0].is_mutual

    def test_single_member_group_warns(self):
        (group,) = group_functions(self._members((fib, 'solo')))
        sink = DiagnosticCollector()
        assert group.validate(sink)
        (warning,) = sink.warnings
        assert warning.kind is DiagnosticKind.CONFIGURATION_WARNING
        assert 'solo' in warning.message

    def test_duplicate_member_is_an_error(self):
        (group,) = group_functions(self._members((fib, 'dup'), (fib, 'dup')))
        sink = DiagnosticCollector()
        assert not group.validate(sink)
        assert sink.has_errors

    @pytest.mark.skipif(not hasattr(ast, 'TypeVar'), reason='PEP 695 needs Python 3.12+')
    def test_type_parameter_mismatch_warns(self):
        config = SafeRecursionConfig(group_id='g')
        first = RecursiveFunction.from_source('def a(x):\n    return x\n', config=config)
        second = RecursiveFunction.from_source('def b[T](x):\n    return x\n', config=config)
        sink = DiagnosticCollector()
        assert RecursionGroup('g', [first, second]).validate(sink)
        (warning,) = sink.of_kind(DiagnosticKind.CONFIGURATION_WARNING)
        assert '[T]' in warning.message

    def test_resolve_plain_call(self):
        group = RecursionGroup('', [RecursiveFunction.from_callable(fib)])
        caller = group.members[0]
        call = ast.parse('fib(n - 1)').body[0].value
        other = ast.parse('abs(n)').body[0].value
        assert group.resolve_call(call, caller).target is caller
        assert group.resolve_call(call, caller).receiver is None
        assert group.resolve_call(other, caller) is None

    def test_resolve_method_calls(self):
        visit = RecursiveFunction.from_callable(Walker.visit)
        halve = RecursiveFunction.from_callable(Walker.halve)
        count = RecursiveFunction.from_callable(Walker.count)
        group = RecursionGroup('w', [visit, halve, count])

        def resolve(source, caller):
            return group.resolve_call(ast.parse(source).body[0].value, caller)

        assert ast.unparse(resolve('self.visit(1)', visit).receiver) == 'self'
        assert resolve('Walker.halve(4)', halve).receiver is None
        assert resolve('self.halve(4)', visit).receiver is None
        assert ast.unparse(resolve('cls.count(1)', count).receiver) == 'cls'
        assert ast.unparse(resolve('self.count(1)', visit).receiver) == 'type(self)'
        assert resolve('other.visit(1)', visit) is None
        assert resolve('self.seen.append(1)', visit) is None
        # A bare name never refers to a method
        assert resolve('visit(1)', visit) is None


# ═══════════════════════════════════════════════════════════════════
#  Call-site classification
# ═══════════════════════════════════════════════════════════════════

class TestCallSiteClassifier:

    def test_return_of_call(self):
        report, sink = classify(gcd)
        assert not report.has_critical_failure
        assert len(report.recursive_returns) == 1
        assert len(report.returns) == 1
        assert not sink.diagnostics

    def test_assignments(self):
        report, _ = classify(fib)
        assert len(report.assignments) == 2
        assert len(report.returns) == 2
        assert all(s.target.name == 'fib' for s in report.assignments)

    def test_void_calls(self):
        report, _ = classify(walk)
        assert len(report.void_calls) == 2
        assert len(report.returns) == 1
        assert report.returns[0].statement.value is None

    def test_multi_declaration_element(self):
        report, _ = classify(declare_many)
        (site,) = report.declarations
        assert site.element == 1
        assert isinstance(site.statement, ast.Assign)

    def test_annotated_declaration(self):
        report, _ = classify(annotated)
        (site,) = report.declarations
        assert site.element is None
        assert isinstance(site.statement, ast.AnnAssign)

    def test_augmented_assignment(self):
        report, _ = classify(accumulate)
        assert len(report.by_role(CallSiteRole.AUGMENTED_ASSIGNMENT)) == 1

    def test_non_member_calls_ignored(self):
        report, _ = classify(calls_other)
        assert [s.target.name for s in report.sites if s.target] == ['calls_other']

    def test_nested_scope_returns_ignored(self):
        report, _ = classify(with_nested_return)
        assert len(report.returns) == 2

    def test_mutual_calls(self):
        members = [
            RecursiveFunction.from_callable(f, SafeRecursionConfig(group_id='p'))
            for f in (is_odd, is_even)
        ]
        group = RecursionGroup('p', members)
        report = CallSiteClassifier(group, DiagnosticCollector()).classify(members[0])
        (site,) = report.assignments
        assert site.target.name == 'is_even'

    @pytest.mark.parametrize('func, fragment', [
        (in_condition, 'Unsupported location'),
        (in_operand, 'Unsupported location'),
        (in_lambda, 'nested'),
        (in_comprehension, 'Unsupported location'),
        (in_for_header, 'Unsupported location'),
        (in_while, 'Unsupported location'),
        (in_with, 'Unsupported location'),
        (in_match, 'Unsupported location'),
        (in_walrus, 'Unsupported location'),
        (augmented_attribute, 'Augmented assignment'),
        (with_generator, 'generator'),
        (with_await, 'coroutine'),
    ])
    def test_hard_failures(self, func, fragment):
        report, sink = classify(func)
        assert report.has_critical_failure
        assert sink.has_errors
        assert any(fragment in d.message for d in sink.errors)
        assert all(d.kind is DiagnosticKind.UNSUPPORTED_SYNTAX for d in sink.errors)

    def test_nonlocal_rejected(self):
        report, sink = classify(with_nonlocal_helper())
        assert report.has_critical_failure
        assert 'nonlocal' in sink.errors[0].message

    def test_zero_argument_super_rejected(self):
        report, sink = classify(Walker.uses_super)
        assert report.has_critical_failure
        assert 'super()' in sink.errors[0].message

    def test_error_position_points_into_source(self):
        _, sink = classify(in_operand)
        position = sink.errors[0].position
        assert position.filename.endswith('test_analysis.py')
        first = in_operand.__code__.co_firstlineno
        assert first < position.lineno <= first + 3

    def test_raise_warns(self):
        report, sink = classify(with_raise)
        assert not report.has_critical_failure
        assert report.warnings == 1
        (warning,) = sink.warnings
        assert warning.kind is DiagnosticKind.POTENTIALLY_UNSUPPORTED_SYNTAX

    def test_handlers_and_finally_warn(self):
        report, sink = classify(with_handlers)
        assert not report.has_critical_failure
        assert report.warnings == 2
        assert len(report.assignments) == 1

    def test_classification_is_idempotent(self):
        function = RecursiveFunction.from_callable(fib)
        before = ast.dump(function.node)
        group = RecursionGroup('', [function])
        first = CallSiteClassifier(group, DiagnosticCollector()).classify(function)
        second = CallSiteClassifier(group, DiagnosticCollector()).classify(function)
        assert first.describe() == second.describe()
        assert ast.dump(function.node) == before

    def test_summary(self):
        report, _ = classify(fib)
        assert "'fib'" in report.summary()
        assert '2 assignment(s)' in report.summary()
