"""Item condition grading.

Conditions are ordered best to worst: like_new > good > fair > worn.
"""

from enum import Enum


class ItemCondition(str, Enum):
    """Physical condition of a lent item."""

    LIKE_NEW = "like_new"
    GOOD = "good"
    FAIR = "fair"
    WORN = "worn"

    @property
    def rank(self) -> int:
        """Position in the grading order, 0 is best."""
        return CONDITION_ORDER.index(self)


CONDITION_ORDER: list[ItemCondition] = [
    ItemCondition.LIKE_NEW,
    ItemCondition.GOOD,
    ItemCondition.FAIR,
    ItemCondition.WORN,
]


def is_worse(returned: str | ItemCondition, original: str | ItemCondition | None) -> bool:
    """True when ``returned`` grades strictly below ``original``.

    With no recorded original condition there is nothing to compare against,
    so the return is never treated as worse.
    """
    if original is None:
        return False
    return ItemCondition(returned).rank > ItemCondition(original).rank
