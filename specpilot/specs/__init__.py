"""
Spec provider - read-only access to already-normalized API specs.
"""
from .provider import InMemorySpecProvider, SpecProvider

__all__ = ["InMemorySpecProvider", "SpecProvider"]
