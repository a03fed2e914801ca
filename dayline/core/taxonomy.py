"""
Category taxonomy
Read-only snapshot of the categories available to card synthesis
"""

import re
from typing import Any, Dict, List, Optional

from dayline.config.loader import ConfigLoader, get_config
from dayline.core.logger import get_logger
from dayline.models.entities import TaxonomyDescriptor

logger = get_logger(__name__)

SYSTEM_CATEGORY = "System"
ERROR_SUBCATEGORY = "Error"

DEFAULT_CATEGORIES: List[Dict[str, Any]] = [
    {
        "name": "Work",
        "description": "Focused productive work: coding, writing, design, research for a project.",
    },
    {
        "name": "Personal",
        "description": "Personal errands, planning, shopping, learning outside of work.",
    },
    {
        "name": "Distraction",
        "description": "Entertainment and aimless browsing: social feeds, videos, news.",
    },
    {
        "name": "Idle",
        "description": "Use when the user is idle for most of the period.",
        "is_idle": True,
    },
]


def _slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-") or "category"


class TaxonomyStore:
    """Taxonomy backed by the [[taxonomy.categories]] configuration array"""

    def __init__(self, config: Optional[ConfigLoader] = None):
        self.config = config

    def _raw_categories(self) -> List[Dict[str, Any]]:
        config = self.config or get_config()
        raw = config.get("taxonomy.categories")
        if not raw:
            return DEFAULT_CATEGORIES
        if not isinstance(raw, list):
            logger.warning("taxonomy.categories is not a list, using defaults")
            return DEFAULT_CATEGORIES
        return raw

    def snapshot_for_prompt(self) -> List[TaxonomyDescriptor]:
        """Ordered descriptors; exactly one of them is marked idle"""
        descriptors: List[TaxonomyDescriptor] = []
        seen_ids = set()
        idle_seen = False

        for entry in self._raw_categories():
            name = str(entry.get("name", "")).strip()
            if not name:
                continue
            descriptor_id = str(entry.get("id") or _slugify(name))
            if descriptor_id in seen_ids:
                logger.warning(f"Duplicate taxonomy id ignored: {descriptor_id}")
                continue
            seen_ids.add(descriptor_id)

            is_idle = bool(entry.get("is_idle", False)) and not idle_seen
            idle_seen = idle_seen or is_idle
            descriptors.append(
                TaxonomyDescriptor(
                    id=descriptor_id,
                    name=name,
                    description=entry.get("description"),
                    is_system=bool(entry.get("is_system", False)),
                    is_idle=is_idle,
                )
            )

        if not idle_seen:
            descriptors.append(
                TaxonomyDescriptor(
                    id="idle" if "idle" not in seen_ids else "idle-system",
                    name="Idle",
                    description="Use when the user is idle for most of the period.",
                    is_system=True,
                    is_idle=True,
                )
            )

        return descriptors


def idle_descriptor(descriptors: List[TaxonomyDescriptor]) -> Optional[TaxonomyDescriptor]:
    return next((d for d in descriptors if d.is_idle), None)


def normalize_category(raw: str, descriptors: List[TaxonomyDescriptor]) -> str:
    """
    Map a model supplied category onto the taxonomy

    Exact (case-insensitive) name match first, then anything mentioning
    idleness maps to the idle entry, then the first non-system category.
    """
    cleaned = (raw or "").strip().strip('"').strip()
    if not descriptors:
        return cleaned
    lowered = cleaned.lower()
    for descriptor in descriptors:
        if descriptor.name.lower() == lowered:
            return descriptor.name

    idle = idle_descriptor(descriptors)
    if idle is not None and ("idle" in lowered or "inactive" in lowered):
        return idle.name

    fallback = next((d for d in descriptors if not d.is_system and not d.is_idle), None)
    return (fallback or descriptors[0]).name
