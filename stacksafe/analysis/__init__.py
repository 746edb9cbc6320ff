"""
Analysis: recursion groups and call-site classification.
"""

from stacksafe.analysis.recursion_group import (
    FunctionKind,
    RecursionGroup,
    RecursiveFunction,
    ResolvedCall,
    group_functions,
)
from stacksafe.analysis.call_sites import (
    CallSite,
    CallSiteClassifier,
    CallSiteReport,
    CallSiteRole,
)

__all__ = [
    'FunctionKind',
    'RecursionGroup',
    'RecursiveFunction',
    'ResolvedCall',
    'group_functions',
    'CallSite',
    'CallSiteClassifier',
    'CallSiteReport',
    'CallSiteRole',
]
