"""Root-level alias for the flow tree application factory so ``from app import create_app`` works from the repository root."""

from backend.app import Config, create_app

__all__ = ["Config", "create_app"]
