"""URL reachability validation."""

from linkaudit.validator.local import LocalFileValidator
from linkaudit.validator.validator import Validator, ValidatorConfig

__all__ = ["LocalFileValidator", "Validator", "ValidatorConfig"]
