"""
Trampoline Driver
=================

Executes a call tree without growing the native stack.

Every generated step procedure is a generator: it runs the original body until
it needs the result of a member call, yields the frame describing that call,
and is resumed once the callee has stored its result in the runner's slot.
The driver keeps the paused generators ("cursors") on an explicit LIFO stack,
so call depth is bounded by memory, not by the interpreter's recursion limit.

    run(frame):
        cursor = compute(frame)
        loop:
            advance cursor
            yielded a frame  -> push cursor, cursor = compute(frame)
            finished         -> stack empty ? done : cursor = pop()

Result slots live on the runner instance, one runner per top-level call, so
concurrent top-level calls never share state.

Unwinding:
    If a step raises, the paused cursors are closed innermost first, which runs
    their pending ``finally`` blocks and ``with`` exits in the same order native
    unwinding would, and the exception propagates out of :meth:`run`.
    ``except`` handlers of paused ancestors are not entered.
"""

from typing import Any, Iterator, List

from stacksafe.errors import BadDispatchError

__all__ = ['Trampoline', 'BadDispatchError']

_COMPLETE = object()


class Trampoline:
    """
    Base class of generated runners.

    Subclasses define one class attribute per result slot (default ``None``)
    and implement :meth:`_compute`, which maps a frame to a fresh cursor.
    """

    def _compute(self, frame: Any) -> Iterator[Any]:
        raise NotImplementedError

    def run(self, frame: Any) -> None:
        """Run the call described by *frame* and every call it spawns."""
        compute = self._compute
        stack: List[Iterator[Any]] = []
        cursor = compute(frame)
        try:
            while True:
                inner = next(cursor, _COMPLETE)
                if inner is _COMPLETE:
                    if not stack:
                        return
                    cursor = stack.pop()
                else:
                    stack.append(cursor)
                    cursor = compute(inner)
        except BaseException:
            while stack:
                stack.pop().close()
            raise
