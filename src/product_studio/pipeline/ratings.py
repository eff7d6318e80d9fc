"""Human ratings of finished tasks and their generated images."""

from __future__ import annotations

from collections.abc import Iterable

from product_studio.pipeline.errors import InvalidSubmissionError
from product_studio.pipeline.models import (
    RATING_DIMENSIONS,
    RatingInput,
    RatingSummary,
    RatingView,
    ResultImage,
)

RATING_MIN = 1
RATING_MAX = 5
MAX_COMMENT_LENGTH = 2_000


def validate_rating(payload: RatingInput) -> None:
    """Reject scores outside 1..5; optional dimensions are checked only when given."""

    if not payload.task_id:
        raise InvalidSubmissionError("A rating needs a task id.")
    _check_score("overall", payload.overall)
    for name, score in payload.dimensions().items():
        if score is not None:
            _check_score(name, score)
    if payload.image_path is not None and not payload.image_path.strip():
        raise InvalidSubmissionError("Image path must not be blank.")
    if payload.comment is not None and len(payload.comment) > MAX_COMMENT_LENGTH:
        raise InvalidSubmissionError(
            f"Comment is longer than {MAX_COMMENT_LENGTH} characters.",
        )


def _check_score(name: str, score: int) -> None:
    if isinstance(score, bool) or not isinstance(score, int):
        raise InvalidSubmissionError(f"Rating '{name}' must be an integer.")
    if not RATING_MIN <= score <= RATING_MAX:
        raise InvalidSubmissionError(
            f"Rating '{name}' must be between {RATING_MIN} and {RATING_MAX}, got {score}.",
        )


def summarize_ratings(
    ratings: Iterable[RatingView],
    result_images: Iterable[ResultImage],
) -> RatingSummary:
    """Averages cover image ratings only, rounded to one decimal; 0.0 when nothing is rated."""

    task_rating: RatingView | None = None
    image_ratings: list[RatingView] = []
    for rating in ratings:
        if rating.image_path is None:
            task_rating = rating
        else:
            image_ratings.append(rating)

    averages = {"overall": _average(rating.overall for rating in image_ratings)}
    for name in RATING_DIMENSIONS:
        averages[name] = _average(getattr(rating, name) for rating in image_ratings)

    return RatingSummary(
        task_rating=task_rating,
        image_ratings=image_ratings,
        rated_images=len(image_ratings),
        total_images=sum(1 for image in result_images if image.succeeded),
        averages=averages,
    )


def _average(scores: Iterable[int | None]) -> float:
    present = [score for score in scores if score is not None]
    if not present:
        return 0.0
    return round(sum(present) / len(present), 1)
