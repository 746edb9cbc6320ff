"""
Compiler: turns classified recursion groups into executable stack-safe code.

    frame_layout        frame classes, call-site enum, dispatch frame
    statement_rewriter  member body -> generator step procedure
    entry_points        runner class and public entry points
    generator           pipeline driver, installation, functional API
"""

from stacksafe.compiler.frame_layout import (
    CallFrameLayout,
    FrameLayoutBuilder,
    GroupLayout,
)
from stacksafe.compiler.statement_rewriter import StatementRewriter
from stacksafe.compiler.entry_points import EntryPoint, EntryPointGenerator
from stacksafe.compiler.generator import (
    GenerationResult,
    GeneratedGroup,
    SafeRecursionGenerator,
    build,
    find_marked,
    is_open_for_extension,
    transform,
    transform_group,
)

__all__ = [
    'CallFrameLayout',
    'FrameLayoutBuilder',
    'GroupLayout',
    'StatementRewriter',
    'EntryPoint',
    'EntryPointGenerator',
    'GenerationResult',
    'GeneratedGroup',
    'SafeRecursionGenerator',
    'build',
    'find_marked',
    'is_open_for_extension',
    'transform',
    'transform_group',
]
