"""Correction candidates and reversible source-file rewrites."""

from linkaudit.corrector.corrector import Corrector, CorrectorConfig

__all__ = ["Corrector", "CorrectorConfig"]
