"""
Procedural checks on synthesized cards
Parseable times, non-empty ranges, overlaps, coverage of prior cards and minimum length
"""

from typing import List, Optional, Sequence, Tuple

from dayline.core.timeparse import MINUTES_PER_DAY, day_minutes, format_minutes
from dayline.models.entities import ActivityCard

Range = Tuple[int, int]

FLEXIBILITY_MINUTES = 3
MIN_CARD_MINUTES = 10


def card_range(card: ActivityCard) -> Optional[Range]:
    """Logical-day minute range of a card, None when the times do not parse"""
    start = day_minutes(card.start_time)
    end = day_minutes(card.end_time)
    if start is None or end is None:
        return None
    if end < start:
        end += MINUTES_PER_DAY
    return start, end


def merge_ranges(ranges: Sequence[Range]) -> List[Range]:
    """Union of overlapping or touching ranges, sorted"""
    merged: List[Range] = []
    for start, end in sorted(ranges):
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def is_usable(card: ActivityCard) -> bool:
    bounds = card_range(card)
    return bounds is not None and bounds[1] > bounds[0]


def validate_cards(cards: Sequence[ActivityCard]) -> List[str]:
    """Per-card problems: unparseable times, empty ranges, overlapping neighbours"""
    errors: List[str] = []
    ranged: List[Tuple[Range, ActivityCard]] = []
    for index, card in enumerate(cards, start=1):
        bounds = card_range(card)
        if bounds is None:
            errors.append(
                f"Card {index} '{card.title}' has unparseable times "
                f"'{card.start_time}' - '{card.end_time}' (use h:mm AM/PM)"
            )
            continue
        if bounds[1] <= bounds[0]:
            errors.append(
                f"Card {index} '{card.title}' ends at or before it starts "
                f"({card.start_time} - {card.end_time})"
            )
            continue
        ranged.append((bounds, card))

    ranged.sort(key=lambda item: item[0])
    for (prev_range, prev), (next_range, nxt) in zip(ranged, ranged[1:]):
        overlap = prev_range[1] - next_range[0]
        if overlap > FLEXIBILITY_MINUTES:
            errors.append(
                f"Cards '{prev.title}' ({prev.start_time} - {prev.end_time}) and "
                f"'{nxt.title}' ({nxt.start_time} - {nxt.end_time}) overlap by {overlap} min"
            )
    return errors


def validate_time_coverage(
    existing: Sequence[ActivityCard], new_cards: Sequence[ActivityCard]
) -> List[str]:
    """Time covered by the prior cards must stay covered by the new output"""
    input_ranges = merge_ranges([r for r in map(card_range, existing) if r and r[1] > r[0]])
    if not input_ranges:
        return []

    covered = merge_ranges(
        [
            (start - FLEXIBILITY_MINUTES, end + FLEXIBILITY_MINUTES)
            for start, end in (r for r in map(card_range, new_cards) if r and r[1] > r[0])
        ]
    )

    gaps: List[Range] = []
    for start, end in input_ranges:
        cursor = start
        for cov_start, cov_end in covered:
            if cov_end <= cursor or cov_start >= end:
                continue
            if cov_start > cursor:
                gaps.append((cursor, cov_start))
            cursor = max(cursor, cov_end)
            if cursor >= end:
                break
        if cursor < end:
            gaps.append((cursor, end))

    significant = [(s, e) for s, e in gaps if e - s > FLEXIBILITY_MINUTES]
    if not significant:
        return []

    lines = [
        "Missing coverage for time segments: "
        + ", ".join(f"{format_minutes(s)}-{format_minutes(e)} ({e - s} min)" for s, e in significant),
        "",
        "INPUT CARDS:",
    ]
    lines += [f"  {i}. {c.start_time} - {c.end_time}: {c.title}" for i, c in enumerate(existing, 1)]
    lines += ["", "OUTPUT CARDS:"]
    lines += [f"  {i}. {c.start_time} - {c.end_time}: {c.title}" for i, c in enumerate(new_cards, 1)]
    return ["\n".join(lines)]


def validate_min_duration(cards: Sequence[ActivityCard]) -> List[str]:
    """Every card except the last must be at least MIN_CARD_MINUTES long"""
    errors = []
    for index, card in enumerate(cards[:-1], start=1):
        bounds = card_range(card)
        if bounds is None:
            continue
        minutes = bounds[1] - bounds[0]
        if minutes < MIN_CARD_MINUTES:
            errors.append(f"Card {index} '{card.title}' is only {minutes} minutes long")
    return errors


def collect_issues(
    existing: Sequence[ActivityCard], new_cards: Sequence[ActivityCard]
) -> List[str]:
    """All problems, formatted as feedback for a correction pass"""
    issues: List[str] = []
    card_errors = validate_cards(new_cards)
    if card_errors:
        issues.append("INVALID CARDS:\n" + "\n".join(card_errors))
    coverage = validate_time_coverage(existing, new_cards)
    if coverage:
        issues.append(
            "TIME COVERAGE ERROR:\n"
            + "\n".join(coverage)
            + "\n\nYour output cards must cover ALL time periods of the previous cards."
        )
    durations = validate_min_duration(new_cards)
    if durations:
        issues.append(
            "DURATION ERROR:\n"
            + "\n".join(durations)
            + f"\n\nAll cards except the last must be at least {MIN_CARD_MINUTES} minutes long."
        )
    return issues
