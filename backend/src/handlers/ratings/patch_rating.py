"""
Patch Rating Handler (admin).
PATCH /ratings/{ratingId}
Body: any subset of the five scores and comments.
"""
from chateval.auth import is_admin
from chateval.errors import ChatEvalError
from chateval.logging import logger, log_event
from chateval.ratings import patch_rating
from chateval.store import get_store
from chateval.utils import error_response, format_response, get_path_param, parse_body


def handler(event, context):
    log_event(event)

    if not is_admin(event):
        return format_response(403, {'error': 'Admin access required'})

    try:
        rating_id = get_path_param(event, 'ratingId')
        rating = patch_rating(get_store(), rating_id, parse_body(event))
        return format_response(200, rating)

    except ChatEvalError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error updating rating: {e}")
        return format_response(500, {'error': 'Failed to update rating'})
