"""
Hygienic name allocation for generated code.

Every identifier the generator introduces is drawn from a
:class:`NameAllocator` seeded with all identifiers of the user code, so a
generated helper can never shadow or capture a user name.
"""

import keyword
from typing import Iterable, Set

HYGIENE_PREFIX = '_sr_'


def identifier_base(name: str) -> str:
    """*name* without leading underscores, usable as a prefix of new names."""
    return name.lstrip('_') or 'fn'


class NameAllocator:
    """
    Hands out identifiers that are unique within one generated code unit.

        names = NameAllocator(collect_identifiers(nodes))
        names.fresh('fib_Frame')   # 'fib_Frame', or 'fib_Frame_1' if taken
        names.hidden('runner')     # '_sr_runner'
    """

    def __init__(self, reserved: Iterable[str] = ()):
        self._taken: Set[str] = set(reserved)

    def reserve(self, *names: str) -> None:
        self._taken.update(names)

    def fresh(self, base: str) -> str:
        candidate = base
        counter = 0
        while candidate in self._taken or keyword.iskeyword(candidate):
            counter += 1
            candidate = f'{base}_{counter}'
        self._taken.add(candidate)
        return candidate

    def hidden(self, base: str) -> str:
        """Fresh name in the reserved ``_sr_`` namespace."""
        return self.fresh(HYGIENE_PREFIX + base)
