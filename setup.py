"""
stacksafe: Stack-Safe Recursion for Python

Rewrites recursive functions into trampolined equivalents whose call depth is
bounded by memory rather than by the interpreter's recursion limit:
1. Call-site classification of recursive calls
2. Immutable call frames and tagged dispatch for mutual recursion
3. Generator-based step procedures driven by an explicit-stack trampoline
4. Entry points installed next to the original functions
"""

from setuptools import setup, find_packages

setup(
    name="stacksafe",
    version="1.0.0",
    description="Stack-safe rewriting of recursive Python functions",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    author="stacksafe contributors",
    python_requires=">=3.10",
    packages=find_packages(include=["stacksafe", "stacksafe.*"]),
    install_requires=[],
    extras_require={
        "dev": [
            "pytest>=7.0",
        ]
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Compilers",
        "Topic :: Software Development :: Code Generators",
    ],
)
