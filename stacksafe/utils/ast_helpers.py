"""
AST helpers shared by the analysis and compiler passes.

Node construction goes through small factories so that every pass builds
``def``/``class`` statements the same way. Function and class statements are
produced from a parsed template and then filled in, which keeps them valid on
every supported interpreter regardless of which optional fields (such as
``type_params``) the running version's ``ast`` defines.
"""

import ast
import copy
import inspect
import textwrap
from typing import Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from stacksafe.errors import SourceUnavailableError

# Constructs that open a new scope: returns, yields and names inside them
# belong to that scope, not to the function being transformed.
NESTED_SCOPES = (ast.FunctionDef, ast.AsyncFunctionDef, ast.Lambda, ast.ClassDef)

FUNCTION_NODES = (ast.FunctionDef, ast.AsyncFunctionDef)


# ---------------------------------------------------------------------------
#  Source retrieval
# ---------------------------------------------------------------------------

def parse_callable(func) -> Tuple[ast.AST, str, int]:
    """
    Parse the definition of *func*.

    Returns ``(def_node, filename, line_offset)`` where ``line_offset`` turns
    line numbers of the parsed snippet into line numbers of the real file.
    """
    try:
        lines, first_line = inspect.getsourcelines(func)
        filename = inspect.getsourcefile(func) or '<unknown>'
    except (OSError, TypeError) as exc:
        raise SourceUnavailableError(
            f'Could not retrieve source code for {func!r}: {exc}'
        ) from exc

    source = textwrap.dedent(''.join(lines))
    try:
        tree = ast.parse(source)
    except SyntaxError as exc:
        raise SourceUnavailableError(
            f'Source of {func!r} is not a standalone definition: {exc}'
        ) from exc

    node = find_function(tree, func.__name__)
    if node is None:
        raise SourceUnavailableError(
            f'No definition of {func.__name__!r} found in its source'
        )
    return node, filename, max(first_line - 1, 0)


def find_function(tree: ast.AST, name: str) -> Optional[ast.AST]:
    """First (async) function definition called *name* in *tree*."""
    for node in ast.walk(tree):
        if isinstance(node, FUNCTION_NODES) and node.name == name:
            return node
    return None


# ---------------------------------------------------------------------------
#  Scope-aware traversal
# ---------------------------------------------------------------------------

def iter_own_nodes(statements: Iterable[ast.AST]) -> Iterator[ast.AST]:
    """Walk *statements* without entering nested functions, lambdas or classes."""
    pending = list(statements)
    while pending:
        node = pending.pop()
        yield node
        if isinstance(node, NESTED_SCOPES):
            continue
        pending.extend(ast.iter_child_nodes(node))


def has_return_value(func_node: ast.AST) -> bool:
    """True if the function contains ``return <expr>`` in its own scope."""
    return any(
        isinstance(node, ast.Return) and node.value is not None
        for node in iter_own_nodes(func_node.body)
    )


def declared_globals(func_node: ast.AST) -> Set[str]:
    """Names the function declares ``global`` in its own scope."""
    return {
        name
        for node in iter_own_nodes(func_node.body)
        if isinstance(node, ast.Global)
        for name in node.names
    }


def collect_identifiers(nodes: Iterable[ast.AST]) -> Set[str]:
    """Every identifier spelled anywhere in *nodes*, nested scopes included."""
    names: Set[str] = set()
    for root in nodes:
        for node in ast.walk(root):
            if isinstance(node, ast.Name):
                names.add(node.id)
            elif isinstance(node, ast.arg):
                names.add(node.arg)
            elif isinstance(node, ast.Attribute):
                names.add(node.attr)
            elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
                names.add(node.name)
            elif isinstance(node, ast.alias):
                names.add((node.asname or node.name).split('.')[0])
            elif isinstance(node, ast.keyword) and node.arg:
                names.add(node.arg)
            elif isinstance(node, (ast.Global, ast.Nonlocal)):
                names.update(node.names)
            elif isinstance(node, ast.ExceptHandler) and node.name:
                names.add(node.name)
    return names


# ---------------------------------------------------------------------------
#  Signatures
# ---------------------------------------------------------------------------

def parameter_names(arguments: ast.arguments) -> List[str]:
    """Parameter names in declaration order, ``*args``/``**kwargs`` included."""
    names = [a.arg for a in arguments.posonlyargs]
    names += [a.arg for a in arguments.args]
    if arguments.vararg is not None:
        names.append(arguments.vararg.arg)
    names += [a.arg for a in arguments.kwonlyargs]
    if arguments.kwarg is not None:
        names.append(arguments.kwarg.arg)
    return names


def positional_names(arguments: ast.arguments) -> List[str]:
    return [a.arg for a in arguments.posonlyargs + arguments.args]


def signature_copy(
    arguments: ast.arguments,
    *,
    leading: Sequence[str] = (),
    placeholder_defaults: bool = False,
) -> ast.arguments:
    """
    Copy of *arguments* without annotations.

    ``leading`` parameter names are prepended. With ``placeholder_defaults``
    every default expression is replaced by ``None`` so that it is not
    evaluated a second time; the real values are patched in after execution.
    """
    new = copy.deepcopy(arguments)
    for arg in new.posonlyargs + new.args + new.kwonlyargs:
        arg.annotation = None
    for arg in (new.vararg, new.kwarg):
        if arg is not None:
            arg.annotation = None
    if placeholder_defaults:
        new.defaults = [ast.Constant(value=None) for _ in new.defaults]
        new.kw_defaults = [
            None if d is None else ast.Constant(value=None)
            for d in new.kw_defaults
        ]
    extra = [ast.arg(arg=name, annotation=None) for name in leading]
    if new.posonlyargs:
        new.posonlyargs = extra + new.posonlyargs
    else:
        new.args = extra + new.args
    return new


def simple_arguments(*names: str) -> ast.arguments:
    return ast.arguments(
        posonlyargs=[],
        args=[ast.arg(arg=name, annotation=None) for name in names],
        vararg=None,
        kwonlyargs=[],
        kw_defaults=[],
        kwarg=None,
        defaults=[],
    )


def forward_arguments(
    arguments: ast.arguments,
) -> Tuple[List[ast.expr], List[ast.keyword]]:
    """Call arguments that pass every parameter of *arguments* straight on."""
    args: List[ast.expr] = [load(name) for name in positional_names(arguments)]
    if arguments.vararg is not None:
        args.append(ast.Starred(value=load(arguments.vararg.arg), ctx=ast.Load()))
    keywords = [
        ast.keyword(arg=a.arg, value=load(a.arg)) for a in arguments.kwonlyargs
    ]
    if arguments.kwarg is not None:
        keywords.append(ast.keyword(arg=None, value=load(arguments.kwarg.arg)))
    return args, keywords


# ---------------------------------------------------------------------------
#  Node factories
# ---------------------------------------------------------------------------

def load(name: str) -> ast.Name:
    return ast.Name(id=name, ctx=ast.Load())


def store(name: str) -> ast.Name:
    return ast.Name(id=name, ctx=ast.Store())


def attribute(owner: str, attr: str, ctx: Optional[ast.expr_context] = None) -> ast.Attribute:
    return ast.Attribute(value=load(owner), attr=attr, ctx=ctx or ast.Load())


def call(func: ast.expr, args: Sequence[ast.expr] = (),
         keywords: Sequence[ast.keyword] = ()) -> ast.Call:
    return ast.Call(func=func, args=list(args), keywords=list(keywords))


def assign(target: ast.expr, value: ast.expr) -> ast.Assign:
    return ast.Assign(targets=[target], value=value)


def suspend(value: ast.expr) -> ast.Expr:
    """``yield <value>`` as a statement."""
    return ast.Expr(value=ast.Yield(value=value))


def bare_return() -> ast.Return:
    return ast.Return(value=None)


def make_function(
    name: str,
    arguments: ast.arguments,
    body: List[ast.stmt],
    decorators: Sequence[ast.expr] = (),
) -> ast.FunctionDef:
    node = ast.parse(f'def {name}():\n    pass').body[0]
    node.args = arguments
    node.body = body or [ast.Pass()]
    node.decorator_list = list(decorators)
    return node


def make_class(
    name: str, bases: Sequence[str], body: List[ast.stmt]
) -> ast.ClassDef:
    node = ast.parse(f'class {name}({", ".join(bases)}):\n    pass').body[0]
    node.body = body or [ast.Pass()]
    return node


def parse_statements(source: str) -> List[ast.stmt]:
    return ast.parse(textwrap.dedent(source)).body


# ---------------------------------------------------------------------------
#  Private name mangling
# ---------------------------------------------------------------------------

def mangle(name: str, class_name: str) -> str:
    """Apply CPython's private name mangling for identifiers used in *class_name*."""
    if not name.startswith('__') or name.endswith('__') or '.' in name:
        return name
    stripped = class_name.lstrip('_')
    if not stripped:
        return name
    return f'_{stripped}{name}'


class PrivateNameMangler(ast.NodeTransformer):
    """
    Rewrite ``__private`` identifiers the way the compiler does inside a class.

    Nested classes are left alone: their own name takes over mangling for
    their bodies once the code is compiled again.
    """

    def __init__(self, class_name: str):
        self.class_name = class_name

    def _m(self, name: Optional[str]) -> Optional[str]:
        return mangle(name, self.class_name) if name else name

    def visit_Name(self, node: ast.Name):
        node.id = self._m(node.id)
        return node

    def visit_Attribute(self, node: ast.Attribute):
        node.attr = self._m(node.attr)
        self.generic_visit(node)
        return node

    def visit_arg(self, node: ast.arg):
        node.arg = self._m(node.arg)
        self.generic_visit(node)
        return node

    def visit_keyword(self, node: ast.keyword):
        node.arg = self._m(node.arg)
        self.generic_visit(node)
        return node

    def visit_FunctionDef(self, node):
        node.name = self._m(node.name)
        self.generic_visit(node)
        return node

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_ClassDef(self, node: ast.ClassDef):
        node.name = self._m(node.name)
        for expr in node.bases + node.keywords + node.decorator_list:
            self.visit(expr)
        return node

    def visit_ExceptHandler(self, node: ast.ExceptHandler):
        node.name = self._m(node.name)
        self.generic_visit(node)
        return node

    def visit_Global(self, node):
        node.names = [self._m(n) for n in node.names]
        return node

    visit_Nonlocal = visit_Global
