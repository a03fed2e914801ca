"""
Timeline merging
Folds adjacent same-category cards of a day into longer sessions at read time
"""

from typing import List, Optional, Sequence, Tuple

from dayline.core.logger import get_logger
from dayline.core.timeparse import MINUTES_PER_DAY, day_minutes
from dayline.models.entities import ActivityCard

logger = get_logger(__name__)

DEFAULT_GAP_MINUTES = 5


def _bounds(card: ActivityCard) -> Optional[Tuple[int, int]]:
    start = day_minutes(card.start_time)
    end = day_minutes(card.end_time)
    if start is None or end is None:
        return None
    if end < start:
        end += MINUTES_PER_DAY
    return start, end


def _join(first: str, second: str, separator: str) -> str:
    first, second = first.strip(), second.strip()
    if not first:
        return second
    if not second:
        return first
    return f"{first}{separator}{second}"


def _union_refs(first: ActivityCard, second: ActivityCard) -> Tuple[Optional[str], Optional[List[str]]]:
    refs: List[str] = []
    for ref in (
        [first.video_ref]
        + list(first.other_video_refs or [])
        + [second.video_ref]
        + list(second.other_video_refs or [])
    ):
        if ref and ref not in refs:
            refs.append(ref)
    if not refs:
        return None, None
    return refs[0], refs[1:] or None


def fold_cards(current: ActivityCard, nxt: ActivityCard, end_time: str) -> ActivityCard:
    """Widen current forward to end_time, absorbing nxt's content losslessly"""
    distractions = list(current.distractions or []) + list(nxt.distractions or [])
    video_ref, other_refs = _union_refs(current, nxt)
    return current.model_copy(
        update={
            "end_time": end_time,
            "summary": _join(current.summary, nxt.summary, " "),
            "detailed_summary": _join(current.detailed_summary, nxt.detailed_summary, " Then: "),
            "distractions": distractions or None,
            "video_ref": video_ref,
            "other_video_refs": other_refs,
        }
    )


class TimelineMerger:
    """Pure, idempotent merge of a day's cards"""

    def __init__(self, gap_threshold_minutes: int = DEFAULT_GAP_MINUTES):
        self.gap_threshold_minutes = gap_threshold_minutes

    def merge(self, cards: Sequence[ActivityCard]) -> List[ActivityCard]:
        """
        Merge cards

        Cards are ordered by their start on the logical day. A card is folded
        into the running card when category and subcategory match and it
        starts no more than gap_threshold_minutes after the running card
        ends. Cards with unparseable times keep their input order at the end
        and never fold.
        """
        parseable: List[Tuple[Tuple[int, int], ActivityCard]] = []
        unparseable: List[ActivityCard] = []
        for card in cards:
            bounds = _bounds(card)
            if bounds is None:
                unparseable.append(card)
            else:
                parseable.append((bounds, card))

        if unparseable:
            logger.warning(
                f"{len(unparseable)} timeline cards have unparseable times: "
                + ", ".join(f"'{c.title}'" for c in unparseable[:5])
            )

        parseable.sort(key=lambda item: item[0][0])

        merged: List[ActivityCard] = []
        current: Optional[ActivityCard] = None
        current_end = 0
        for (start, end), card in parseable:
            if (
                current is not None
                and card.category == current.category
                and card.subcategory == current.subcategory
                and start - current_end <= self.gap_threshold_minutes
            ):
                if end > current_end:
                    current = fold_cards(current, card, card.end_time)
                    current_end = end
                else:
                    current = fold_cards(current, card, current.end_time)
                continue

            if current is not None:
                merged.append(current)
            current, current_end = card, end

        if current is not None:
            merged.append(current)

        return merged + unparseable
