"""
Card synthesis stage
Observations + prior cards + taxonomy -> ordered activity cards
"""

from dataclasses import replace
from typing import List, Optional, Tuple

from dayline.core.errors import SchemaParseError
from dayline.core.logger import get_logger
from dayline.core.taxonomy import SYSTEM_CATEGORY, normalize_category
from dayline.llm.base import ActivityGenerationContext, LLMProvider
from dayline.models.entities import ActivityCard, LLMCallLog, Observation
from dayline.processing.validation import card_range, collect_issues, is_usable

logger = get_logger(__name__)

MAX_CORRECTIONS = 3
CONTINUITY_WINDOW_MINUTES = 5


def enforce_continuity(
    cards: List[ActivityCard], last_card: Optional[ActivityCard]
) -> List[ActivityCard]:
    """
    Keep the new window attached to the most recent prior card

    A same-category card that starts inside the prior card and runs past its
    end is an extension: it gets the prior card's exact start time. Otherwise
    the first card starting within a few minutes of the prior end is snapped
    to that end.
    """
    if last_card is None or not cards:
        return cards
    last_range = card_range(last_card)
    if last_range is None:
        return cards
    last_start, last_end = last_range
    window = CONTINUITY_WINDOW_MINUTES
    ranges = [card_range(card) for card in cards]

    for index, (card, bounds) in enumerate(zip(cards, ranges)):
        if bounds is None or card.category != last_card.category:
            continue
        start, end = bounds
        if not (last_start - window <= start < last_end and end > last_end):
            continue
        if start == last_start:
            return cards
        # Another output card already owns the prior start
        if any(
            other is not None and i != index and abs(other[0] - last_start) <= window
            for i, other in enumerate(ranges)
        ):
            break
        logger.debug(f"Restored start of extended card '{card.title}' to {last_card.start_time}")
        cards[index] = card.model_copy(update={"start_time": last_card.start_time})
        return cards

    for index, (card, bounds) in enumerate(zip(cards, ranges)):
        if bounds is None:
            continue
        start = bounds[0]
        if start != last_end and abs(start - last_end) <= window and bounds[1] > last_end:
            logger.debug(f"Snapped start of '{card.title}' to {last_card.end_time}")
            cards[index] = card.model_copy(update={"start_time": last_card.end_time})
            break
    return cards


class CardSynthesisStage:
    """Runs card generation with a bounded validation/correction loop"""

    def __init__(self, provider: LLMProvider, max_corrections: int = MAX_CORRECTIONS):
        self.provider = provider
        self.max_corrections = max_corrections

    async def run(
        self,
        observations: List[Observation],
        context: ActivityGenerationContext,
        day: str,
        batch_id: Optional[int] = None,
    ) -> Tuple[List[ActivityCard], List[LLMCallLog]]:
        """
        Generate cards for the window

        Returns:
            (cards stamped with day, one LLMCallLog per provider call)

        Raises:
            SchemaParseError: No usable card survived validation
        """
        logs: List[LLMCallLog] = []
        cards, log = await self.provider.generate_activity_cards(
            observations, context, batch_id=batch_id
        )
        logs.append(log)

        for correction in range(1, self.max_corrections + 1):
            issues = collect_issues(context.existing_cards, cards)
            if not issues:
                break
            logger.warning(
                f"Batch {batch_id}: card validation failed, correction {correction}/{self.max_corrections}"
            )
            retry_context = replace(context, feedback="\n\n".join(issues))
            cards, log = await self.provider.generate_activity_cards(
                observations, retry_context, batch_id=batch_id
            )
            logs.append(log)
        else:
            remaining = collect_issues(context.existing_cards, cards)
            if remaining:
                logger.warning(
                    f"Batch {batch_id}: accepting cards with unresolved issues: {remaining[0][:200]}"
                )

        usable = [card for card in cards if is_usable(card)]
        if len(usable) < len(cards):
            logger.warning(f"Batch {batch_id}: dropped {len(cards) - len(usable)} cards with unusable times")
        if not usable:
            error = SchemaParseError("Card generation produced no cards with valid times")
            error.call_log = logs[-1]
            raise error

        taxonomy = context.user_taxonomy
        normalized = [
            card
            if card.category == SYSTEM_CATEGORY
            else card.model_copy(update={"category": normalize_category(card.category, taxonomy)})
            for card in usable
        ]

        normalized = enforce_continuity(normalized, context.last_card)
        stamped = [
            card.model_copy(update={"day": day, "batch_id": batch_id, "id": None})
            for card in normalized
        ]
        stamped.sort(key=lambda card: card_range(card))
        return stamped, logs
