"""Category-scored validation of generated artifacts."""

from kiln.validation.validator import Validator

__all__ = ["Validator"]
