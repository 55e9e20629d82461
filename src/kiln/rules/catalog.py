"""The fixed set of rule categories a validator runs."""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from kiln.models.findings import Category
from kiln.rules.base import RuleCategory
from kiln.rules.registry import RuleRegistry


class RuleCatalog:
    """Ordered, immutable collection of rule categories (one per ``Category``)."""

    def __init__(self, categories: Iterable[RuleCategory]) -> None:
        self._categories: dict[Category, RuleCategory] = {}
        for rule in categories:
            if rule.category in self._categories:
                raise ValueError(f"Duplicate rule category '{rule.category.value}'")
            self._categories[rule.category] = rule

    @classmethod
    def default(cls) -> RuleCatalog:
        """Catalog of every built-in category."""
        return cls(RuleRegistry.create_all())

    def __iter__(self) -> Iterator[RuleCategory]:
        return iter(self._categories.values())

    def __len__(self) -> int:
        return len(self._categories)

    def __contains__(self, category: object) -> bool:
        return category in self._categories

    def get(self, category: Category) -> RuleCategory | None:
        return self._categories.get(category)

    @property
    def categories(self) -> list[Category]:
        return list(self._categories)
