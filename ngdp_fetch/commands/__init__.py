"""CLI command implementations for ngdp_fetch.

- fetch: Write a file, by file id or name, to a destination path
- resolve: Show the content hash and encoding keys of a file
"""

from ngdp_fetch.commands.fetch import fetch, resolve

__all__ = ["fetch", "resolve"]
