"""
Prompt templates

Templates and generation parameters live in config/prompts_<language>.toml:
[prompts.<category>] tables hold str.format templates, [config.<category>]
tables hold temperature, max tokens and similar request parameters.
"""

from pathlib import Path
from typing import Any, Dict, Optional

import toml

from dayline.core.logger import get_logger

logger = get_logger(__name__)

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "config"


class PromptManager:
    def __init__(self, config_path: Optional[str] = None, language: str = "en"):
        self.language = language
        self.config_path = Path(config_path) if config_path else self._locate(language)
        self.config: Dict[str, Any] = self._read()
        self.prompts: Dict[str, Any] = self.config.get("prompts", {})

    @staticmethod
    def _locate(language: str) -> Path:
        localized = PROMPTS_DIR / f"prompts_{language}.toml"
        if localized.exists():
            return localized
        logger.warning(f"No prompts for language {language!r}, falling back to English")
        return PROMPTS_DIR / "prompts_en.toml"

    def _read(self) -> Dict[str, Any]:
        try:
            config = toml.load(str(self.config_path))
        except FileNotFoundError:
            logger.error(f"Prompt configuration file does not exist: {self.config_path}")
            return {}
        except toml.TomlDecodeError as e:
            logger.error(f"Failed to parse prompt configuration file: {e}")
            return {}
        logger.debug(f"Loaded prompt configuration: {self.config_path}")
        return config

    def _section(self, category: str) -> Optional[Dict[str, Any]]:
        """Walk a dotted category such as "local.summary" down the prompts table"""
        node: Any = self.prompts
        for part in category.split("."):
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return node if isinstance(node, dict) else None

    def get_prompt(self, category: str, prompt_type: str, **kwargs) -> str:
        """
        Render one template.

        Missing categories or templates log a warning and render as "".
        A template referencing an unknown placeholder is returned unformatted.
        """
        section = self._section(category)
        if section is None:
            logger.warning(f"Prompt category not found: {category}")
            return ""
        template = section.get(prompt_type, "")
        if not template:
            logger.warning(f"Prompt not found: {category}.{prompt_type}")
            return ""
        if not kwargs:
            return template.strip()
        try:
            return template.format(**kwargs).strip()
        except KeyError as e:
            logger.error(f"Prompt {category}.{prompt_type} is missing parameter {e}")
            return template.strip()

    def get_user_prompt(self, category: str, prompt_type: str = "user_prompt_template", **kwargs) -> str:
        return self.get_prompt(category, prompt_type, **kwargs)

    def get_config_params(self, category: str, prompt_type: Optional[str] = None) -> Dict[str, Any]:
        """
        Request parameters for a category.

        Layered: [config.default_params], then scalar keys of
        [config.<category>], then the [config.<category>.<prompt_type>] table.
        """
        tables = self.config.get("config", {})
        params = dict(tables.get("default_params", {}))
        own = tables.get(category)
        if not isinstance(own, dict):
            return params
        params.update((k, v) for k, v in own.items() if not isinstance(v, dict))
        nested = own.get(prompt_type) if prompt_type else None
        if isinstance(nested, dict):
            params.update(nested)
        return params


_prompt_manager: Optional[PromptManager] = None


def get_prompt_manager(language: str = "en") -> PromptManager:
    global _prompt_manager
    if _prompt_manager is None or _prompt_manager.language != language:
        _prompt_manager = PromptManager(language=language)
    return _prompt_manager


def get_transcription_prompt(duration: str) -> str:
    """Transcription instructions for a video of the given MM:SS length"""
    return get_prompt_manager().get_user_prompt("transcription", duration=duration)


def get_card_generation_prompt(
    taxonomy: str,
    extracted_taxonomy: str,
    current_time: str,
    existing_cards: str,
    observations: str,
) -> str:
    return get_prompt_manager().get_user_prompt(
        "card_generation",
        taxonomy=taxonomy,
        extracted_taxonomy=extracted_taxonomy,
        current_time=current_time,
        existing_cards=existing_cards,
        observations=observations,
    )


def get_correction_addendum(errors: str) -> str:
    return "\n\n" + get_prompt_manager().get_prompt(
        "card_generation", "correction_addendum", errors=errors
    )
