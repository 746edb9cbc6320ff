"""
Call Frames
===========

Runtime bases for the frame classes emitted by the frame layout builder.

A **call frame** captures one pending invocation: the argument values of a
single call, in declaration order. Frames are immutable ``tuple`` subclasses,
so the step procedure that consumes one simply unpacks it:

    n, acc = frame

Generated frame classes only declare ``_fields`` and a ``__new__`` whose
signature mirrors the original function, e.g.

    def fib_Frame_new(_sr_cls, n):
        return _sr_make_frame(_sr_cls, (n,))

    class fib_Frame(CallFrame):
        __slots__ = ()
        _fields = ('n',)
        __new__ = fib_Frame_new

A **dispatch frame** pairs a call-site discriminant with the member frame it
wraps; it is only used by mutually recursive groups.
"""

from operator import itemgetter
from typing import Any, Tuple

make_frame = tuple.__new__


class CallFrame(tuple):
    """Immutable argument record of one pending call."""

    __slots__ = ()
    _fields: Tuple[str, ...] = ()

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        # setattr keeps field names free of class-body name mangling
        for index, name in enumerate(cls._fields):
            setattr(cls, name, property(itemgetter(index), doc=f'Field {name!r}'))

    def __eq__(self, other: Any) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return tuple.__eq__(self, other)

    def __ne__(self, other: Any) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return tuple.__ne__(self, other)

    __hash__ = tuple.__hash__

    def __repr__(self) -> str:
        parts = ', '.join(
            f'{name}={value!r}' for name, value in zip(self._fields, self)
        )
        return f'{type(self).__name__}({parts})'

    def __reduce__(self):
        return (make_frame, (type(self), tuple(self)))


class DispatchFrame(tuple):
    """``(call_site, frame)`` pair routed by a mutual-group runner."""

    __slots__ = ()

    call_site = property(itemgetter(0), doc='Discriminant naming the member')
    frame = property(itemgetter(1), doc='Member call frame')

    def __eq__(self, other: Any) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return tuple.__eq__(self, other)

    def __ne__(self, other: Any) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return tuple.__ne__(self, other)

    __hash__ = tuple.__hash__

    def __repr__(self) -> str:
        return f'{type(self).__name__}({self[0]!r}, {self[1]!r})'
