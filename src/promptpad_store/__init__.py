"""
Promptpad Store - the persistence core of the Promptpad note-taking app.

A single-file SQLite database holding structured notes with full-text
search, soft delete, pinning and forward-only schema migrations, accessed
through a bounded connection pool.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("promptpad-store")
except PackageNotFoundError:
    __version__ = "0.1.0"
