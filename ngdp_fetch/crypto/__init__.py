"""Hash functions for NGDP formats."""

from __future__ import annotations

from ngdp_fetch.crypto.jenkins import hashlittle, hashlittle2, name_hash

__all__ = ["hashlittle", "hashlittle2", "name_hash"]
