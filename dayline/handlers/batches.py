"""
Batch command handlers
"""

from datetime import datetime
from typing import Any, Dict, List

from dayline.core.coordinator import get_coordinator
from dayline.core.db import get_db
from dayline.core.errors import AnalysisError
from dayline.core.logger import get_logger
from dayline.models import GetBatchesRequest, GetLLMCallsRequest, ReprocessBatchesRequest

from . import api_handler

logger = get_logger(__name__)


@api_handler(
    body=GetBatchesRequest,
    method="POST",
    path="/batches",
    tags=["batches"],
)
async def get_batches(body: GetBatchesRequest) -> Dict[str, Any]:
    """List the analysis batches of a logical day.

    @param body - Logical day.
    @returns Batches with status, reason and retry count
    """
    try:
        batches = get_db().fetch_batches(body.day)
        return {
            "success": True,
            "data": {
                "day": body.day,
                "batches": [batch.model_dump(mode="json") for batch in batches],
                "count": len(batches),
            },
            "timestamp": datetime.now().isoformat(),
        }
    except Exception as e:
        logger.error(f"Failed to get batches for {body.day}: {e}")
        return {"success": False, "error": str(e), "message": "Failed to load batches"}


@api_handler(
    body=ReprocessBatchesRequest,
    method="POST",
    path="/batches/reprocess",
    tags=["batches"],
)
async def reprocess_batches(body: ReprocessBatchesRequest) -> Dict[str, Any]:
    """Reprocess selected batches, or every batch of a day.

    Runs to completion and returns the progress lines emitted on the way.

    @param body - Batch ids, or a logical day when no ids are given.
    """
    if not body.batch_ids and not body.day:
        return {
            "success": False,
            "error": "Either batchIds or day is required",
            "message": "Nothing to reprocess",
        }

    progress: List[str] = []
    try:
        manager = get_coordinator().ensure_manager()
        if body.batch_ids:
            await manager.reprocess_batches(body.batch_ids, progress.append)
        else:
            await manager.reprocess_day(body.day, progress.append)
        return {
            "success": True,
            "data": {"progress": progress},
            "message": "Reprocessing completed",
            "timestamp": datetime.now().isoformat(),
        }
    except AnalysisError as e:
        logger.error(f"Reprocessing failed: {e}")
        return {
            "success": False,
            "error": str(e),
            "data": {"progress": progress},
            "message": "Reprocessing failed",
        }


@api_handler(
    body=GetLLMCallsRequest,
    method="POST",
    path="/batches/llm-calls",
    tags=["batches"],
)
async def get_llm_calls(body: GetLLMCallsRequest) -> Dict[str, Any]:
    """Get the LLM call audit trail of one batch.

    @param body - Batch id.
    """
    try:
        calls = get_db().fetch_llm_calls(body.batch_id)
        return {
            "success": True,
            "data": {
                "batchId": body.batch_id,
                "calls": [call.model_dump(mode="json") for call in calls],
                "count": len(calls),
            },
            "timestamp": datetime.now().isoformat(),
        }
    except Exception as e:
        logger.error(f"Failed to get LLM calls for batch {body.batch_id}: {e}")
        return {"success": False, "error": str(e), "message": "Failed to load LLM calls"}


@api_handler(method="GET", path="/stats", tags=["batches"])
async def get_processing_stats() -> Dict[str, Any]:
    """Get analysis coordinator statistics.

    @returns Statistics data with success flag and timestamp
    """
    stats = get_coordinator().get_stats()
    return {"success": True, "data": stats, "timestamp": datetime.now().isoformat()}
