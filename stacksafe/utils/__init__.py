"""
Shared helpers for AST construction and hygienic naming.
"""
