"""
Marker Configuration
====================

Functions opt in to stack-safe generation with the :func:`safe_recursion`
marker. The marker only records a :class:`SafeRecursionConfig` on the function
object and returns the function unchanged; generation happens later, through
:func:`stacksafe.build`, :func:`stacksafe.transform` or a
:class:`stacksafe.SafeRecursionGenerator`.

    @safe_recursion
    def fib(n): ...

    @safe_recursion(group_id='parity', access='private')
    def is_odd(n): ...

Options:
    access                 Naming convention of the generated entry point.
    generated_name         Entry point name (default: original name + ``_safe``).
    extension_mode         Install as method / plain function / like the original.
    group_id               Non-empty id puts the function in a mutual group.
    expose_as_entry_point  Whether a mutual member gets an entry point.
"""

from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Any, Callable, Optional

DEFAULT_NAME_SUFFIX = '_safe'
MARKER_ATTRIBUTE = '__stacksafe_config__'


class AccessLevel(Enum):
    """
    Visibility of a generated entry point, expressed as a name prefix.

    Python has no access modifiers; protected, internal and protected-internal
    all collapse onto the single-underscore convention.
    """
    COPY_EXISTING = 'copy-existing'
    PUBLIC = 'public'
    PROTECTED = 'protected'
    INTERNAL = 'internal'
    PROTECTED_INTERNAL = 'protected-internal'
    PRIVATE = 'private'

    @property
    def prefix(self) -> Optional[str]:
        """Leading underscores for this level, ``None`` for copy-existing."""
        return _ACCESS_PREFIXES[self]

    def apply(self, name: str) -> str:
        prefix = self.prefix
        if prefix is None:
            return name
        return prefix + name.lstrip('_')


_ACCESS_PREFIXES = {
    AccessLevel.COPY_EXISTING: None,
    AccessLevel.PUBLIC: '',
    AccessLevel.PROTECTED: '_',
    AccessLevel.INTERNAL: '_',
    AccessLevel.PROTECTED_INTERNAL: '_',
    AccessLevel.PRIVATE: '__',
}


class ExtensionMode(Enum):
    """
    How the entry point binds its first parameter.

    COPY_EXISTING    same binding as the original (method, static, class or plain)
    FORCE_EXTENSION  first parameter is the receiver: installed as a method
    FORCE_PLAIN      no receiver: installed as a plain/static function
    """
    COPY_EXISTING = 'copy-existing'
    FORCE_EXTENSION = 'force-extension'
    FORCE_PLAIN = 'force-plain'


@dataclass(frozen=True)
class SafeRecursionConfig:
    access: AccessLevel = AccessLevel.COPY_EXISTING
    generated_name: Optional[str] = None
    extension_mode: ExtensionMode = ExtensionMode.COPY_EXISTING
    group_id: str = ''
    expose_as_entry_point: bool = True

    def __post_init__(self):
        # Normalise user input; frozen dataclasses need object.__setattr__
        object.__setattr__(self, 'access', AccessLevel(self.access))
        object.__setattr__(
            self, 'extension_mode', ExtensionMode(self.extension_mode)
        )
        object.__setattr__(self, 'group_id', self.group_id or '')
        if self.generated_name is not None and not self.generated_name.isidentifier():
            raise ValueError(
                f'generated_name must be an identifier, got {self.generated_name!r}'
            )

    @property
    def is_mutual(self) -> bool:
        return bool(self.group_id)

    def entry_point_name(self, original_name: str) -> str:
        """Name under which the generated entry point is published."""
        name = self.generated_name or original_name + DEFAULT_NAME_SUFFIX
        return self.access.apply(name)

    @classmethod
    def from_options(cls, **options: Any) -> 'SafeRecursionConfig':
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(options) - known)
        if unknown:
            raise TypeError(
                f'Unknown safe_recursion option(s): {", ".join(unknown)}'
            )
        return cls(**options)

    def with_options(self, **options: Any) -> 'SafeRecursionConfig':
        return replace(self, **options) if options else self


def get_config(func: Any) -> Optional[SafeRecursionConfig]:
    """Return the marker configuration of *func*, or ``None`` if unmarked."""
    if isinstance(func, (staticmethod, classmethod)):
        func = func.__func__
    return getattr(func, MARKER_ATTRIBUTE, None)


def safe_recursion(func: Optional[Callable] = None, **options: Any):
    """
    Mark a function for stack-safe generation.

    Can be used with or without arguments:

        @safe_recursion
        def f(n): ...

        @safe_recursion(group_id='walk', expose_as_entry_point=False)
        def g(n): ...
    """
    config = SafeRecursionConfig.from_options(**options)

    def decorator(fn: Callable) -> Callable:
        target = fn.__func__ if isinstance(fn, (staticmethod, classmethod)) else fn
        setattr(target, MARKER_ATTRIBUTE, config)
        return fn

    if func is not None:
        return decorator(func)
    return decorator
