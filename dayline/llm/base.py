"""
LLM provider interface
Every provider variant implements exactly two operations: transcribe and synthesize
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from dayline.core.timeparse import format_clock_ts
from dayline.models.entities import (
    ActivityCard,
    LLMCallLog,
    Observation,
    TaxonomyDescriptor,
)


@dataclass
class ActivityGenerationContext:
    """Everything card synthesis needs besides the new observations"""

    current_time: datetime
    existing_cards: List[ActivityCard] = field(default_factory=list)
    user_taxonomy: List[TaxonomyDescriptor] = field(default_factory=list)
    # "Category > Subcategory" pairs already used by existing cards
    extracted_taxonomy: List[str] = field(default_factory=list)
    # Every observation in the sliding window, not only the new batch
    batch_observations: List[Observation] = field(default_factory=list)
    # Validation errors from the previous synthesis attempt
    feedback: Optional[str] = None

    @property
    def last_card(self) -> Optional[ActivityCard]:
        return self.existing_cards[-1] if self.existing_cards else None


def extract_taxonomy(cards: List[ActivityCard]) -> List[str]:
    """Unique category > subcategory pairs in order of first use"""
    seen: List[str] = []
    for card in cards:
        pair = f"{card.category} > {card.subcategory}" if card.subcategory else card.category
        if pair not in seen:
            seen.append(pair)
    return seen


def format_observations(observations: List[Observation]) -> str:
    """One "[h:mm AM - h:mm AM]: text" line per observation"""
    return "\n".join(
        f"[{format_clock_ts(obs.start_ts)} - {format_clock_ts(obs.end_ts)}]: {obs.text}"
        for obs in observations
    )


def format_taxonomy(descriptors: List[TaxonomyDescriptor]) -> str:
    lines = []
    for descriptor in descriptors:
        line = f'- "{descriptor.name}"'
        if descriptor.description:
            line += f": {descriptor.description}"
        if descriptor.is_idle:
            line += " (idle)"
        lines.append(line)
    return "\n".join(lines)


class LLMProvider(ABC):
    """Capability interface used by the pipeline stages"""

    name: str = "provider"
    # Receives logs of intermediate calls a provider makes besides the one it returns
    call_sink: Optional[Callable[[LLMCallLog], None]] = None

    def record_call(self, log: Optional[LLMCallLog]) -> None:
        if log is not None and self.call_sink is not None:
            self.call_sink(log)

    @abstractmethod
    async def transcribe_video(
        self,
        data: bytes,
        mime_type: str,
        prompt: str,
        batch_start_time: int,
        video_duration: float,
        batch_id: Optional[int] = None,
    ) -> Tuple[List[Observation], LLMCallLog]:
        """Turn a batch video into observations with absolute timestamps"""

    @abstractmethod
    async def generate_activity_cards(
        self,
        observations: List[Observation],
        context: ActivityGenerationContext,
        batch_id: Optional[int] = None,
    ) -> Tuple[List[ActivityCard], LLMCallLog]:
        """Turn observations plus prior cards into an ordered card sequence"""
