# rbuild/errors.py
# -*- coding: utf-8 -*-
"""
Error types shared by rbuild modules.

Every error carries a small str->str context mapping which is rendered below
the message, so a failure printed by the CLI names the package, variant and
command without the caller having to format anything.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional


class BuildError(Exception):
    """Base class for all rbuild errors."""

    def __init__(self, message: str, *, context: Optional[Mapping[str, str]] = None):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, str] = dict(context or {})

    def __str__(self) -> str:
        parts = [self.message]
        for k, v in self.context.items():
            if v:
                parts.append(f"  {k}: {v}")
        return "\n".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "context": dict(self.context),
        }


class RecipeError(BuildError):
    pass


class ConfigError(BuildError):
    pass


__all__ = ["BuildError", "ConfigError", "RecipeError"]
