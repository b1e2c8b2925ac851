"""Configuration package."""

from motingest.config.settings import Settings

__all__ = ["Settings"]
