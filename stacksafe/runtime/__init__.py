"""
Runtime support imported by generated code.
"""

from stacksafe.runtime.frames import CallFrame, DispatchFrame, make_frame
from stacksafe.runtime.trampoline import Trampoline

__all__ = ['CallFrame', 'DispatchFrame', 'make_frame', 'Trampoline']
