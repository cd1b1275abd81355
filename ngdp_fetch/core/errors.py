"""Error taxonomy for the content resolution pipeline."""

from __future__ import annotations


class NGDPError(Exception):
    """Base class for all resolution pipeline errors."""


class DecodeError(NGDPError, ValueError):
    """Malformed container, unknown chunk mode, checksum failure or missing key."""


class ExtractionError(NGDPError):
    """Bytes could not be fetched, decoded or written for a location."""


class ConstructionError(NGDPError):
    """The resolver cannot be built for this product/region/locale."""


class KeyBootstrapError(NGDPError):
    """Decryption key tables could not be loaded."""
