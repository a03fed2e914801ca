import base64
import json
from datetime import datetime

import httpx
import pytest

from dayline.core.errors import NetworkError
from dayline.core.models import Frame
from dayline.llm.base import ActivityGenerationContext
from dayline.llm.local import LocalVisionProvider, segment_coverage
from dayline.models import Observation, TranscriptSegment

BATCH_START = 1_700_000_000
DAY = "2025-03-01"


def ts(hour, minute=0):
    return int(datetime(2025, 3, 1, hour, minute).timestamp())


def chat_reply(text):
    return httpx.Response(200, json={"choices": [{"message": {"content": text}}]})


class FakeLocalServer:
    """OpenAI-compatible chat endpoint: frames are described, text prompts replay queued replies"""

    def __init__(self, replies=(), failing_frames=()):
        self.replies = list(replies)
        self.failing_frames = set(failing_frames)
        self.prompts = []

    def __call__(self, request):
        assert request.url.path == "/v1/chat/completions"
        content = json.loads(request.content)["messages"][0]["content"]
        if isinstance(content, list):
            url = content[1]["image_url"]["url"]
            image = base64.b64decode(url.split(",", 1)[1]).decode()
            if image in self.failing_frames:
                return httpx.Response(500, text="model crashed")
            return chat_reply(f"Screen {image.split('-')[1]}")
        self.prompts.append(content)
        reply = self.replies.pop(0)
        return chat_reply(reply if isinstance(reply, str) else json.dumps(reply))


class FakeSampler:
    def __init__(self, count, interval=60):
        self.frames = [Frame(timestamp=i * interval, image=f"frame-{i}".encode()) for i in range(count)]

    async def sample(self, data, mime_type, interval):
        return list(self.frames)


def make_provider(server, no_sleep, frames=15):
    return LocalVisionProvider(
        endpoint="http://local.test",
        model="vl-test",
        sampler=FakeSampler(frames),
        http_transport=httpx.MockTransport(server),
        sleep=no_sleep,
    )


def segments(*ranges):
    return {
        "reasoning": "grouped",
        "segments": [
            {"startTimestamp": s, "endTimestamp": e, "description": f"Segment {s}"} for s, e in ranges
        ],
    }


@pytest.mark.asyncio
async def test_frames_are_grouped_into_segments(no_sleep):
    server = FakeLocalServer([segments(("00:00", "07:30"), ("07:30", "15:00"))])

    observations, log = await make_provider(server, no_sleep).transcribe_video(
        b"mp4", "video/mp4", "ignored", BATCH_START, 900, batch_id=3
    )

    assert [(o.start_ts, o.end_ts) for o in observations] == [
        (BATCH_START, BATCH_START + 450),
        (BATCH_START + 450, BATCH_START + 900),
    ]
    assert observations[0].model_id == "vl-test"
    assert "You have 15 snapshots from a 15:00 screen recording" in server.prompts[0]
    assert "14:00 -> Screen 14" in server.prompts[0]
    assert log.operation == "segment"


@pytest.mark.asyncio
async def test_rejected_segmentation_falls_back_to_frames(no_sleep):
    server = FakeLocalServer([segments(("00:00", "15:00")), segments(("00:00", "15:00"))])

    observations, _ = await make_provider(server, no_sleep).transcribe_video(
        b"mp4", "video/mp4", "ignored", BATCH_START, 900
    )

    assert "PREVIOUS ATTEMPT WAS REJECTED: Expected 2-5 segments, got 1" in server.prompts[1]
    assert len(observations) == 15
    assert (observations[0].start_ts, observations[0].end_ts) == (BATCH_START, BATCH_START + 60)
    assert observations[-1].end_ts == BATCH_START + 900
    assert observations[0].metadata == {"source": "frame"}
    assert observations[0].text == "Screen 0"


@pytest.mark.asyncio
async def test_failing_frame_is_skipped(no_sleep):
    server = FakeLocalServer([segments(("00:00", "01:30"), ("01:30", "03:00"))], failing_frames={"frame-1"})

    observations, _ = await make_provider(server, no_sleep, frames=3).transcribe_video(
        b"mp4", "video/mp4", "ignored", BATCH_START, 180
    )

    assert len(observations) == 2
    assert "You have 2 snapshots" in server.prompts[0]
    assert "Screen 1" not in server.prompts[0]
    assert no_sleep.calls == [5.0]


@pytest.mark.asyncio
async def test_no_described_frames_is_an_error(no_sleep):
    server = FakeLocalServer(failing_frames={"frame-0", "frame-1"})

    with pytest.raises(NetworkError, match="could not describe any frame"):
        await make_provider(server, no_sleep, frames=2).transcribe_video(
            b"mp4", "video/mp4", "ignored", BATCH_START, 120
        )


def test_segment_coverage():
    covered = segment_coverage(
        [
            TranscriptSegment(start_timestamp="00:00", end_timestamp="05:00", description="a"),
            TranscriptSegment(start_timestamp="04:00", end_timestamp="08:00", description="b"),
            TranscriptSegment(start_timestamp="bad", end_timestamp="09:00", description="c"),
        ],
        600,
    )
    assert covered == pytest.approx(0.8)


def card_context(taxonomy, existing=()):
    return ActivityGenerationContext(
        current_time=datetime(2025, 3, 1, 12, 0),
        existing_cards=list(existing),
        user_taxonomy=taxonomy.snapshot_for_prompt(),
    )


SUMMARY = {"reasoning": "mostly code", "summary": "Refactored the parser.", "category": "work"}
TITLE = {"reasoning": "short", "title": "Refactored the parser"}


@pytest.mark.asyncio
async def test_new_card_is_appended(no_sleep, taxonomy, make_card):
    previous = make_card("8:00 AM", "8:30 AM", day=DAY)
    server = FakeLocalServer([SUMMARY, TITLE])
    observations = [Observation(start_ts=ts(9, 20), end_ts=ts(9, 35), text="Editing parser.py")]

    cards, log = await make_provider(server, no_sleep).generate_activity_cards(
        observations, card_context(taxonomy, [previous])
    )

    assert cards[0] == previous
    new_card = cards[1]
    assert (new_card.start_time, new_card.end_time) == ("9:20 AM", "9:35 AM")
    assert new_card.category == "Work"
    assert new_card.title == "Refactored the parser"
    assert "Editing parser.py" in server.prompts[0]
    assert log.operation == "title"


@pytest.mark.asyncio
async def test_confident_merge_extends_previous_card(no_sleep, taxonomy, make_card):
    previous = make_card("9:00 AM", "9:20 AM", day=DAY)
    server = FakeLocalServer(
        [
            SUMMARY,
            TITLE,
            {"reason": "same task", "combine": True, "confidence": 0.9},
            {"title": "Parser refactor marathon", "summary": "Kept refactoring the parser."},
        ]
    )
    observations = [Observation(start_ts=ts(9, 20), end_ts=ts(9, 35), text="Editing parser.py")]

    cards, _ = await make_provider(server, no_sleep).generate_activity_cards(
        observations, card_context(taxonomy, [previous])
    )

    [merged] = cards
    assert (merged.start_time, merged.end_time) == ("9:00 AM", "9:35 AM")
    assert merged.title == "Parser refactor marathon"
    assert "Previous activity (9:00 AM - 9:20 AM)" in server.prompts[2]


@pytest.mark.asyncio
async def test_unsure_merge_keeps_cards_apart(no_sleep, taxonomy, make_card):
    previous = make_card("9:00 AM", "9:20 AM", day=DAY)
    server = FakeLocalServer(
        [SUMMARY, TITLE, {"reason": "different", "combine": True, "confidence": 0.5}]
    )
    observations = [Observation(start_ts=ts(9, 20), end_ts=ts(9, 35), text="Editing parser.py")]

    cards, _ = await make_provider(server, no_sleep).generate_activity_cards(
        observations, card_context(taxonomy, [previous])
    )

    assert [c.start_time for c in cards] == ["9:00 AM", "9:20 AM"]


@pytest.mark.asyncio
async def test_intermediate_calls_reach_the_call_sink(no_sleep, taxonomy):
    server = FakeLocalServer(
        [segments(("00:00", "01:30"), ("01:30", "03:00")), SUMMARY, TITLE],
        failing_frames={"frame-1"},
    )
    provider = make_provider(server, no_sleep, frames=3)
    recorded = []
    provider.call_sink = recorded.append

    observations, segment_log = await provider.transcribe_video(
        b"mp4", "video/mp4", "ignored", BATCH_START, 180, batch_id=4
    )
    _, title_log = await provider.generate_activity_cards(
        observations, card_context(taxonomy), batch_id=4
    )

    assert [(log.operation, log.status) for log in recorded] == [
        ("describe_frame", "success"),
        ("describe_frame", "failure"),
        ("describe_frame", "success"),
        ("summarize", "success"),
    ]
    assert {log.batch_id for log in recorded} == {4}
    assert (segment_log.operation, title_log.operation) == ("segment", "title")


@pytest.mark.asyncio
async def test_rejected_segmentation_attempt_is_recorded(no_sleep):
    server = FakeLocalServer([segments(("00:00", "15:00")), segments(("00:00", "07:30"), ("07:30", "15:00"))])
    provider = make_provider(server, no_sleep, frames=2)
    recorded = []
    provider.call_sink = recorded.append

    _, log = await provider.transcribe_video(b"mp4", "video/mp4", "ignored", BATCH_START, 900)

    [rejected] = [entry for entry in recorded if entry.operation == "segment"]
    assert rejected.status == "failure"
    assert rejected.error == "Expected 2-5 segments, got 1"
    assert log.status == "success"
