"""Mirror registry access."""

from .prober import RegistryProber

__all__ = ["RegistryProber"]
