"""Rating eligibility.

Each party may rate the other exactly once, and only after the item is back
(``returned`` or ``completed``). A borrower's rating is a rating *of* the
lender, recorded with ``is_lender_rating=True``.
"""

from app.config import settings
from app.core.exceptions import AuthorizationError, TransactionConflict, ValidationError
from app.domain.transaction_state import TransactionStatus

MIN_RATING = 1
MAX_RATING = 5

RATEABLE_STATUSES = {TransactionStatus.RETURNED, TransactionStatus.COMPLETED}


def validate_rating_value(rating) -> int:
    """Reject anything but an integer in [1, 5]; 0 is not a rating."""
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise ValidationError("Rating must be a whole number between 1 and 5")
    if not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationError(f"Rating must be between {MIN_RATING} and {MAX_RATING}")
    return rating


def assess_eligibility(status: str, is_party: bool, already_rated: bool) -> tuple[bool, str | None]:
    """Check if a user may rate a transaction."""
    if not is_party:
        return False, "Only the borrower or lender can rate this transaction"
    if TransactionStatus(status) not in RATEABLE_STATUSES:
        return False, "Cannot rate until the item has been returned"
    if already_rated:
        return False, "You have already rated this transaction"
    return True, None


def assert_can_rate(status: str, is_party: bool, already_rated: bool) -> None:
    allowed, reason = assess_eligibility(status, is_party, already_rated)
    if allowed:
        return
    if not is_party:
        raise AuthorizationError(reason)
    raise TransactionConflict(reason, current_status=str(status))


def direction(rater_is_borrower: bool) -> bool:
    """``is_lender_rating`` for a rating submitted by the given party."""
    return rater_is_borrower


def required_ratings() -> int:
    """Ratings needed before a returned transaction completes."""
    return 2 if settings.completion_requires_both_ratings else 1


def should_complete(ratings_count: int, status: str) -> bool:
    return TransactionStatus(status) == TransactionStatus.RETURNED and ratings_count >= required_ratings()
