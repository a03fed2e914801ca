import pytest

from dayline.core.models import TERMINAL_STATUSES, BatchStatus, can_transition

PENDING = BatchStatus.PENDING
PROCESSING = BatchStatus.PROCESSING
TERMINAL = sorted(TERMINAL_STATUSES, key=lambda s: s.value)


@pytest.mark.parametrize(
    "current, new, reprocess",
    [(PENDING, PROCESSING, False)]
    + [(PROCESSING, status, False) for status in TERMINAL]
    + [(status, PENDING, True) for status in TERMINAL]
    + [(PROCESSING, PENDING, True)],
)
def test_allowed_transitions(current, new, reprocess):
    assert can_transition(current, new, reprocess=reprocess)


@pytest.mark.parametrize(
    "current, new, reprocess",
    [(PENDING, status, False) for status in TERMINAL]
    + [(status, PROCESSING, False) for status in TERMINAL]
    + [(status, PENDING, False) for status in TERMINAL]
    + [(PENDING, PENDING, False), (PENDING, PENDING, True), (PROCESSING, PROCESSING, False)]
    + [(a, b, False) for a in TERMINAL for b in TERMINAL],
)
def test_rejected_transitions(current, new, reprocess):
    assert not can_transition(current, new, reprocess=reprocess)


def test_terminal_statuses():
    assert {s for s in BatchStatus if s.is_terminal} == {
        BatchStatus.COMPLETED,
        BatchStatus.FAILED,
        BatchStatus.FAILED_EMPTY,
        BatchStatus.SKIPPED_SHORT,
    }
