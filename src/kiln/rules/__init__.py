"""Rule catalog: structural, contract, safety, performance, security and accessibility checks."""

# Import rule modules to trigger registration
import kiln.rules.framework as _framework  # noqa: F401
import kiln.rules.quality as _quality  # noqa: F401
import kiln.rules.syntax as _syntax  # noqa: F401
from kiln.rules.base import RuleCategory
from kiln.rules.catalog import RuleCatalog
from kiln.rules.registry import RuleRegistry, UnknownCategoryError

__all__ = [
    "RuleCatalog",
    "RuleCategory",
    "RuleRegistry",
    "UnknownCategoryError",
]
