from dayline.processing.validation import (
    collect_issues,
    merge_ranges,
    validate_cards,
    validate_min_duration,
    validate_time_coverage,
)


def test_merge_ranges_joins_touching_ranges():
    assert merge_ranges([(30, 40), (0, 10), (10, 20)]) == [(0, 20), (30, 40)]


def test_small_overlap_is_tolerated(make_card):
    cards = [make_card("9:00 AM", "9:32 AM"), make_card("9:30 AM", "10:00 AM")]
    assert validate_cards(cards) == []


def test_unparseable_and_empty_ranges_are_reported(make_card):
    errors = validate_cards([make_card("9 o'clock", "10:00 AM"), make_card("9:00 AM", "9:00 AM")])

    assert len(errors) == 2
    assert "unparseable" in errors[0]
    assert "ends at or before" in errors[1]


def test_coverage_allows_flexibility(make_card):
    existing = [make_card("9:00 AM", "10:00 AM")]
    assert validate_time_coverage(existing, [make_card("9:02 AM", "9:58 AM")]) == []
    assert validate_time_coverage(existing, [make_card("9:10 AM", "10:00 AM")]) != []


def test_coverage_across_midnight(make_card):
    existing = [make_card("11:30 PM", "12:30 AM")]
    assert validate_time_coverage(existing, [make_card("11:30 PM", "12:30 AM")]) == []


def test_last_card_may_be_short(make_card):
    cards = [make_card("9:00 AM", "9:30 AM"), make_card("9:30 AM", "9:33 AM")]
    assert validate_min_duration(cards) == []


def test_collect_issues_is_empty_for_clean_output(make_card):
    existing = [make_card("9:00 AM", "9:30 AM")]
    output = [make_card("9:00 AM", "9:30 AM"), make_card("9:30 AM", "9:40 AM")]
    assert collect_issues(existing, output) == []
