"""
RustFS development session launcher.

Starts the RustFS backend and the console dev server, together or on their own,
and stops them together when the session ends.
"""

__version__ = "0.1.0"
