"""
exec-writers: build single executable artifacts from source content.

Given a name or explicit path, a body of content and a build kind (an
interpreter to shebang-wrap or a compile command to run), the writers produce
one executable, optionally checked, stripped and wrapped, and place it inside
an output tree. Generated content enters the same tree only after its hash
matches a caller-provided pin.

Importing the package has no side effects: no config loading, no logging init.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
