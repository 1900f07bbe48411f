"""
Rating engine: one rating per conversation, five criteria scored 1-5.
"""
from typing import Any, Dict, Optional

from .errors import ConflictError, NotFoundError, ValidationError
from .logging import logger
from .models import RATING_CRITERIA, RatingScores, new_rating_item
from .store import EntityStore

# A rating always belongs to the conversation it was created for
IMMUTABLE_RATING_FIELDS = ('ratingId', 'conversationId')


def upsert_rating(
    store: EntityStore,
    conversation_id: str,
    scores: RatingScores,
    submitting_user_id: Optional[str] = None,
    partial: bool = False
) -> Dict[str, Any]:
    """
    Create the conversation's rating, or merge the supplied fields onto it.

    Submitting the same payload twice leaves a single rating. Fields not
    supplied keep their stored values.

    Raises:
        ValidationError: a full submission without all five scores
        NotFoundError: unknown conversation
    """
    if not conversation_id:
        raise ValidationError('Invalid rating data', {'conversationId': 'required'})
    if not partial and not scores.is_complete():
        missing = [c for c in RATING_CRITERIA if getattr(scores, c) is None]
        raise ValidationError('Invalid rating data', {c: 'required' for c in missing})

    existing = store.get_rating_by_conversation(conversation_id)
    if existing is None:
        if partial:
            raise NotFoundError('Rating not found', {'conversationId': conversation_id})
        if store.get_conversation(conversation_id) is None:
            raise NotFoundError('Conversation not found', {'conversationId': conversation_id})
        try:
            rating = store.create_rating(new_rating_item(conversation_id, scores, submitting_user_id))
            logger.info(f"Rating {rating['ratingId']} created for conversation {conversation_id}")
            return rating
        except ConflictError:
            # Lost the create race; merge onto the winner's rating instead
            existing = store.get_rating_by_conversation(conversation_id)
            if existing is None:
                raise

    rating = store.update_rating(existing['ratingId'], scores.supplied_fields())
    logger.info(f"Rating {rating['ratingId']} updated for conversation {conversation_id}")
    return rating


def patch_rating(store: EntityStore, rating_id: str, partial_fields: Dict[str, Any]) -> Dict[str, Any]:
    """
    Admin correction of an existing rating by id.

    Raises:
        ValidationError: an out-of-range score or an attempt to move the rating
        NotFoundError: unknown rating id
    """
    immutable = [f for f in IMMUTABLE_RATING_FIELDS if f in (partial_fields or {})]
    if immutable:
        raise ValidationError('Invalid rating data', {f: 'cannot be changed' for f in immutable})

    scores = RatingScores.from_payload(partial_fields, partial=True)
    if store.get_rating(rating_id) is None:
        raise NotFoundError('Rating not found', {'ratingId': rating_id})

    rating = store.update_rating(rating_id, scores.supplied_fields())
    logger.info(f"Rating {rating_id} patched: {sorted(scores.supplied_fields())}")
    return rating
