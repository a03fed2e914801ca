"""
Timeline command handlers
"""

from datetime import datetime
from typing import Any, Dict

from dayline.config.loader import get_config
from dayline.core.db import get_db
from dayline.core.logger import get_logger
from dayline.models import GetTimelineRequest
from dayline.processing.merger import TimelineMerger

from . import api_handler

logger = get_logger(__name__)


@api_handler(
    body=GetTimelineRequest,
    method="POST",
    path="/timeline",
    tags=["timeline"],
)
async def get_timeline(body: GetTimelineRequest) -> Dict[str, Any]:
    """Get the activity cards of a logical day.

    @param body - Day and whether adjacent same-category cards are folded.
    @returns Cards with success flag and timestamp
    """
    try:
        cards = get_db().fetch_timeline_cards(body.day)
        if body.merged:
            gap = int(get_config().get("timeline.merge_gap_minutes", 5))
            cards = TimelineMerger(gap_threshold_minutes=gap).merge(cards)

        return {
            "success": True,
            "data": {
                "day": body.day,
                "cards": [card.model_dump(mode="json") for card in cards],
                "count": len(cards),
                "merged": body.merged,
            },
            "timestamp": datetime.now().isoformat(),
        }
    except Exception as e:
        logger.error(f"Failed to get timeline for {body.day}: {e}")
        return {"success": False, "error": str(e), "message": "Failed to load timeline"}
