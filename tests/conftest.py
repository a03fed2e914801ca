import os
import tempfile
from pathlib import Path

# Point configuration (and with it the database and log directories) at a
# throwaway location before any dayline module is imported.
_CONFIG_DIR = Path(tempfile.mkdtemp(prefix="dayline-tests-"))
os.environ.setdefault("DAYLINE_CONFIG_FILE", str(_CONFIG_DIR / "config.toml"))

from datetime import datetime  # noqa: E402
from unittest.mock import MagicMock  # noqa: E402

import pytest  # noqa: E402

from dayline.core.db import DatabaseManager  # noqa: E402
from dayline.core.taxonomy import DEFAULT_CATEGORIES, TaxonomyStore  # noqa: E402
from dayline.llm.base import LLMProvider  # noqa: E402
from dayline.models import ActivityCard, LLMCallLog  # noqa: E402


def call_log(operation, batch_id=None, status="success"):
    return LLMCallLog(
        timestamp=datetime.now(),
        latency=0.01,
        batch_id=batch_id,
        provider="scripted",
        operation=operation,
        status=status,
    )


class ScriptedProvider(LLMProvider):
    """Provider double that replays queued results

    Each queue entry is either a value to return or an exception to raise.
    The last card response repeats once the queue runs dry.
    """

    name = "scripted"

    def __init__(self, transcripts=None, cards=None):
        self.transcripts = list(transcripts or [])
        self.cards = list(cards or [])
        self.transcribe_calls = []
        self.card_contexts = []

    async def transcribe_video(
        self, data, mime_type, prompt, batch_start_time, video_duration, batch_id=None
    ):
        self.transcribe_calls.append(
            {"prompt": prompt, "batch_start_time": batch_start_time, "duration": video_duration}
        )
        result = self.transcripts.pop(0)
        if isinstance(result, Exception):
            raise result
        return result, call_log("transcribe", batch_id)

    async def generate_activity_cards(self, observations, context, batch_id=None):
        self.card_contexts.append(context)
        result = self.cards.pop(0) if len(self.cards) > 1 else self.cards[0]
        if isinstance(result, Exception):
            raise result
        return list(result), call_log("generate_cards", batch_id)


@pytest.fixture
def taxonomy():
    config = MagicMock()
    config.get.return_value = DEFAULT_CATEGORIES
    return TaxonomyStore(config)


@pytest.fixture
def db(tmp_path):
    return DatabaseManager(str(tmp_path / "dayline.db"))


@pytest.fixture
def make_card():
    def _make(start, end, category="Work", subcategory="Coding", title=None, **extra):
        return ActivityCard(
            start_time=start,
            end_time=end,
            category=category,
            subcategory=subcategory,
            title=title or f"{category} {start}",
            summary=extra.pop("summary", f"{category} from {start} to {end}"),
            detailed_summary=extra.pop("detailed_summary", ""),
            **extra,
        )

    return _make


class RecordingSleep:
    """Async sleep stand-in that records requested delays"""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def no_sleep():
    return RecordingSleep()
