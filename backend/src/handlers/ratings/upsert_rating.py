"""
Upsert Rating Handler.
POST /ratings
Body: { "conversationId": "...", "accuracy": 1-5, "clarity": 1-5, "relevance": 1-5,
        "consistency": 1-5, "completeness": 1-5, "comments": "..." }

A second submission for the same conversation updates the existing rating.
"""
from chateval.auth import get_user_sub
from chateval.errors import ChatEvalError
from chateval.logging import logger, log_event
from chateval.models import RatingScores
from chateval.ratings import upsert_rating
from chateval.store import get_store
from chateval.utils import error_response, format_response, parse_body


def handler(event, context):
    log_event(event)

    try:
        body = parse_body(event)
        scores = RatingScores.from_payload(body)
        user_id = get_user_sub(event) or body.get('userId')

        rating = upsert_rating(
            get_store(),
            body.get('conversationId'),
            scores,
            submitting_user_id=user_id
        )
        return format_response(200, rating)

    except ChatEvalError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Save rating error: {e}")
        return format_response(500, {'error': 'Failed to save rating'})
