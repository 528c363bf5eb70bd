"""
Risk category catalog.

This module declares:
- the fixed, ordered set of risk categories
- validation rules for catalogs
- analysis-mode views (comprehensive / quick)

It is purely declarative. It does NOT call any collaborator.
"""

from __future__ import annotations

from typing import Iterator, List, Sequence

from analyzer.app.schemas.categories import Category


class CategoryCatalog:
    """
    Immutable, ordered collection of risk categories.

    Ordering is authoritative: categories are analyzed by ascending
    priority, and in declaration order within a priority.
    """

    def __init__(self, categories: Sequence[Category]) -> None:
        self._validate(categories)
        self._categories = tuple(categories)

    # ------------------------------------------------------------------
    # Sequence protocol
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._categories)

    def __getitem__(self, index: int) -> Category:
        return self._categories[index]

    def __iter__(self) -> Iterator[Category]:
        return iter(self._categories)

    @property
    def names(self) -> List[str]:
        return [c.name for c in self._categories]

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def for_mode(self, mode: str) -> "CategoryCatalog":
        """
        Return the catalog view for an analysis mode.

        - comprehensive: every category
        - quick: the highest-priority categories only
        """
        if mode == "comprehensive":
            return self
        if mode == "quick":
            top = min(c.priority for c in self._categories)
            return CategoryCatalog(
                [c for c in self._categories if c.priority == top]
            )
        raise ValueError(f"Unsupported analysis mode '{mode}'")

    # ------------------------------------------------------------------
    # Internal validation
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(categories: Sequence[Category]) -> None:
        if not categories:
            raise ValueError("A category catalog requires at least one category")

        seen = set()
        previous_priority = None

        for category in categories:
            if category.name in seen:
                raise ValueError(f"Duplicate category name '{category.name}'")
            seen.add(category.name)

            if (
                previous_priority is not None
                and category.priority < previous_priority
            ):
                raise ValueError(
                    f"Category '{category.name}' (priority {category.priority}) "
                    f"is declared after a priority {previous_priority} category"
                )
            previous_priority = category.priority


DEFAULT_CATEGORIES: List[Category] = [
    Category(
        name="LIABILITY AND INDEMNIFICATION",
        priority=1,
        focus_areas=(
            "Unlimited liability clauses",
            "Broad indemnification requirements",
            "Missing liability caps or limitations",
            "One-sided liability provisions",
            "Indemnification for third-party claims",
            "Consequential or punitive damages exposure",
        ),
    ),
    Category(
        name="TERMINATION AND RENEWAL",
        priority=1,
        focus_areas=(
            "Automatic renewal without consent",
            "Short notice periods for termination",
            "Termination for convenience limitations",
            "Post-termination obligations",
            "Termination fees or penalties",
        ),
    ),
    Category(
        name="PAYMENT AND FINANCIAL",
        priority=2,
        focus_areas=(
            "Payment terms favoring other party",
            "Late payment penalties or interest",
            "Automatic price increases",
            "Expense reimbursement obligations",
            "Missing payment dispute processes",
        ),
    ),
    Category(
        name="INTELLECTUAL PROPERTY",
        priority=2,
        focus_areas=(
            "Broad IP assignment or licensing",
            "Work-for-hire provisions",
            "IP indemnification requirements",
            "Trade secret and confidentiality overreach",
        ),
    ),
    Category(
        name="PERFORMANCE AND COMPLIANCE",
        priority=3,
        focus_areas=(
            "Unrealistic performance guarantees",
            "Service level agreement penalties",
            "Compliance with changing regulations",
            "Standard of care obligations",
        ),
    ),
    Category(
        name="DISPUTE RESOLUTION",
        priority=3,
        focus_areas=(
            "Mandatory arbitration clauses",
            "Venue and jurisdiction limitations",
            "Attorney fees and costs provisions",
            "Waiver of jury trial rights",
        ),
    ),
]


def default_catalog(mode: str = "comprehensive") -> CategoryCatalog:
    return CategoryCatalog(DEFAULT_CATEGORIES).for_mode(mode)
