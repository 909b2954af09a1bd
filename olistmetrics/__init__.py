"""
Top-level package for the marketplace metrics pipeline.
"""

__all__ = ["ProjectConfig", "run_all"]

from .pipeline import ProjectConfig, run_all  # convenience re-export
