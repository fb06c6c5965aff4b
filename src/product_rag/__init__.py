"""Product Q&A assistant package."""

from .config import AppConfig, RetrievalConfig, ScoringConfig

__all__ = ["AppConfig", "RetrievalConfig", "ScoringConfig"]
