"""Seed data for the live coach."""
from .modules import BUILTIN_MODULE_NEEDS, BUILTIN_MODULES

__all__ = ["BUILTIN_MODULES", "BUILTIN_MODULE_NEEDS"]
