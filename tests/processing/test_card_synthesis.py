from datetime import datetime

import pytest

from conftest import ScriptedProvider
from dayline.core.errors import SchemaParseError
from dayline.llm.base import ActivityGenerationContext
from dayline.processing.card_synthesis import CardSynthesisStage, enforce_continuity

DAY = "2025-03-01"


@pytest.fixture
def context(taxonomy):
    def _make(existing=None):
        return ActivityGenerationContext(
            current_time=datetime(2025, 3, 1, 15, 0),
            existing_cards=existing or [],
            user_taxonomy=taxonomy.snapshot_for_prompt(),
        )

    return _make


@pytest.mark.asyncio
async def test_valid_cards_are_stamped_and_sorted(make_card, context):
    provider = ScriptedProvider(
        cards=[[make_card("9:30 AM", "10:00 AM", category="Personal"), make_card("9:00 AM", "9:30 AM")]]
    )

    cards, logs = await CardSynthesisStage(provider).run([], context(), day=DAY, batch_id=7)

    assert [c.start_time for c in cards] == ["9:00 AM", "9:30 AM"]
    assert all(c.day == DAY and c.batch_id == 7 and c.id is None for c in cards)
    assert len(logs) == 1
    assert provider.card_contexts[0].feedback is None


@pytest.mark.asyncio
async def test_overlap_triggers_correction_with_feedback(make_card, context):
    provider = ScriptedProvider(
        cards=[
            [make_card("9:00 AM", "9:40 AM"), make_card("9:30 AM", "10:00 AM", category="Personal")],
            [make_card("9:00 AM", "9:30 AM"), make_card("9:30 AM", "10:00 AM", category="Personal")],
        ]
    )

    cards, logs = await CardSynthesisStage(provider).run([], context(), day=DAY)

    assert len(logs) == 2
    assert "INVALID CARDS" in provider.card_contexts[1].feedback
    assert "overlap" in provider.card_contexts[1].feedback
    assert cards[0].end_time == "9:30 AM"


@pytest.mark.asyncio
async def test_dropped_coverage_is_reported(make_card, context):
    prior = make_card("9:00 AM", "9:30 AM")
    provider = ScriptedProvider(
        cards=[
            [make_card("9:45 AM", "10:15 AM")],
            [make_card("9:00 AM", "9:30 AM"), make_card("9:30 AM", "10:15 AM", category="Personal")],
        ]
    )

    await CardSynthesisStage(provider).run([], context([prior]), day=DAY)

    feedback = provider.card_contexts[1].feedback
    assert "TIME COVERAGE ERROR" in feedback
    assert "9:00 AM-9:30 AM" in feedback


@pytest.mark.asyncio
async def test_short_cards_are_reported(make_card, context):
    provider = ScriptedProvider(
        cards=[
            [make_card("9:00 AM", "9:05 AM"), make_card("9:05 AM", "10:00 AM", category="Personal")],
            [make_card("9:00 AM", "10:00 AM")],
        ]
    )

    await CardSynthesisStage(provider).run([], context(), day=DAY)

    assert "DURATION ERROR" in provider.card_contexts[1].feedback


@pytest.mark.asyncio
async def test_corrections_are_bounded(make_card, context):
    overlapping = [make_card("9:00 AM", "9:40 AM"), make_card("9:30 AM", "10:00 AM", category="Personal")]
    provider = ScriptedProvider(cards=[overlapping])

    cards, logs = await CardSynthesisStage(provider, max_corrections=3).run([], context(), day=DAY)

    # Initial attempt plus three corrections, then the last output is accepted
    assert len(logs) == 4
    assert len(cards) == 2


@pytest.mark.asyncio
async def test_no_usable_cards_raises_schema_error(make_card, context):
    provider = ScriptedProvider(cards=[[make_card("sometime", "later")]])

    with pytest.raises(SchemaParseError) as exc_info:
        await CardSynthesisStage(provider, max_corrections=1).run([], context(), day=DAY)

    assert exc_info.value.call_log is not None


@pytest.mark.asyncio
async def test_unusable_cards_are_dropped(make_card, context):
    provider = ScriptedProvider(cards=[[make_card("9:00 AM", "10:00 AM"), make_card("bad", "worse")]])

    cards, _ = await CardSynthesisStage(provider, max_corrections=0).run([], context(), day=DAY)

    assert len(cards) == 1


@pytest.mark.asyncio
async def test_categories_are_normalized(make_card, context):
    provider = ScriptedProvider(
        cards=[
            [
                make_card("9:00 AM", "9:30 AM", category="coding"),
                make_card("9:30 AM", "10:00 AM", category="Idle time"),
                make_card("10:00 AM", "10:30 AM", category="personal"),
                make_card("10:30 AM", "11:00 AM", category="System", subcategory="Error"),
            ]
        ]
    )

    cards, _ = await CardSynthesisStage(provider).run([], context(), day=DAY)

    assert [c.category for c in cards] == ["Work", "Idle", "Personal", "System"]


@pytest.mark.asyncio
async def test_new_card_start_snaps_to_prior_end(make_card, context):
    prior = make_card("1:30 PM", "2:00 PM")
    provider = ScriptedProvider(
        cards=[[make_card("1:30 PM", "2:00 PM"), make_card("2:02 PM", "2:30 PM", category="Personal")]]
    )

    cards, _ = await CardSynthesisStage(provider).run([], context([prior]), day=DAY)

    assert cards[1].start_time == "2:00 PM"


@pytest.mark.asyncio
async def test_extension_keeps_prior_start(make_card, context):
    prior = make_card("1:30 PM", "2:00 PM")
    provider = ScriptedProvider(cards=[[make_card("1:32 PM", "2:30 PM")]])

    cards, _ = await CardSynthesisStage(provider).run([], context([prior]), day=DAY)

    assert len(cards) == 1
    assert cards[0].start_time == "1:30 PM"
    assert cards[0].end_time == "2:30 PM"


def test_continuity_leaves_distant_cards_alone(make_card):
    prior = make_card("1:30 PM", "2:00 PM")
    cards = [make_card("2:20 PM", "2:40 PM", category="Personal")]

    assert enforce_continuity(cards, prior)[0].start_time == "2:20 PM"


def test_continuity_without_prior_card_is_a_no_op(make_card):
    cards = [make_card("2:20 PM", "2:40 PM")]

    assert enforce_continuity(cards, None) == cards
