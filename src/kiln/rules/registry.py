"""Rule category registry. Built-in categories register themselves on import."""

from __future__ import annotations

from kiln.models.findings import Category
from kiln.rules.base import RuleCategory


class UnknownCategoryError(Exception):
    """Raised when a requested rule category is not registered."""

    def __init__(self, name: str, available: list[str]) -> None:
        self.category_name = name
        self.available = available
        super().__init__(f"Unknown rule category '{name}'. Available: {', '.join(available)}")


class RuleRegistry:
    """Registry for built-in rule categories, kept in registration order."""

    _categories: dict[Category, type[RuleCategory]] = {}

    @classmethod
    def register(cls, rule_class: type[RuleCategory]) -> type[RuleCategory]:
        """Register a rule category class. Can be used as a decorator."""
        instance = rule_class()
        cls._categories[instance.category] = rule_class
        return rule_class

    @classmethod
    def get(cls, name: str) -> RuleCategory:
        try:
            category = Category(name)
        except ValueError:
            category = None
        if category is None or category not in cls._categories:
            raise UnknownCategoryError(name, available=cls.available())
        return cls._categories[category]()

    @classmethod
    def available(cls) -> list[str]:
        return [category.value for category in Category if category in cls._categories]

    @classmethod
    def create_all(cls) -> list[RuleCategory]:
        """Instantiate every registered category, in ``Category`` declaration order."""
        return [cls._categories[c]() for c in Category if c in cls._categories]
