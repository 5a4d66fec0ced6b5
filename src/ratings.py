"""Customer ratings of farmers, one per delivered order."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Tuple

from auth import Session
from metrics import RATINGS_SUBMITTED_TOTAL
from models import FarmerRating, Rating
from repository import ConcurrentModificationError, MarketplaceRepository, Rollback

logger = logging.getLogger(__name__)


def submit_rating(
    repository: MarketplaceRepository,
    session: Session,
    order_id: Any,
    rating: int,
    comment: str = "",
) -> Tuple[bool, str]:
    """Rate the farmer of one of the session user's delivered orders.

    The farmer's ``rating`` becomes the mean of every rating in their list
    and ``totalRatings`` its length.
    """
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        return False, "Please select a rating"
    comment = (comment or "").strip()
    today = date.today().isoformat()
    try:
        with repository.transaction() as data:
            order = data.order(order_id)
            if order is None or order.user_id != session.user_id:
                raise Rollback("Order not found")
            if order.status != "delivered":
                raise Rollback("Only delivered orders can be rated")
            if order.farmer_rating is not None:
                raise Rollback("This order has already been rated")
            farmer = data.user(order.farmer_id)
            if farmer is None:
                raise Rollback("Farmer not found")
            order.farmer_rating = FarmerRating(rating=rating, comment=comment, date=today)
            if farmer.ratings is None:
                farmer.ratings = []
            farmer.ratings.append(
                Rating(
                    rating=rating,
                    comment=comment,
                    date=today,
                    user_id=session.user_id,
                    user_name=session.user.name,
                    order_id=order.id,
                )
            )
            farmer.rating = sum(r.rating for r in farmer.ratings) / len(farmer.ratings)
            farmer.total_ratings = len(farmer.ratings)
    except Rollback as e:
        logger.info(
            "Rating rejected",
            extra={"user_id": session.user_id, "extra": {"order_id": order_id, "reason": str(e)}},
        )
        return False, str(e)
    except ConcurrentModificationError:
        return False, "Your rating could not be saved. Please try again."
    RATINGS_SUBMITTED_TOTAL.inc(rating=rating)
    logger.info(
        "Rating submitted",
        extra={
            "user_id": session.user_id,
            "extra": {"order_id": order.id, "farmer_id": farmer.id, "average": farmer.rating},
        },
    )
    return True, "Rating submitted successfully!"
