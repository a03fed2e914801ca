import pytest

from dayline.llm.prompt_manager import (
    PromptManager,
    get_correction_addendum,
    get_transcription_prompt,
)

PROMPTS = """
[config.default_params]
temperature = 0.3
max_tokens = 100

[config.local]
temperature = 0.1

[config.local.title]
max_tokens = 20

[prompts.greeting]
user_prompt_template = "Hello {name}"

[prompts.local.title]
user_prompt_template = "  Title for {summary}  "
"""


@pytest.fixture
def manager(tmp_path):
    path = tmp_path / "prompts_test.toml"
    path.write_text(PROMPTS, encoding="utf-8")
    return PromptManager(config_path=str(path))


def test_templates_are_formatted_and_stripped(manager):
    assert manager.get_user_prompt("greeting", name="Ada") == "Hello Ada"
    assert manager.get_user_prompt("local.title", summary="notes") == "Title for notes"


def test_missing_templates_render_empty(manager):
    assert manager.get_prompt("nope", "user_prompt_template") == ""
    assert manager.get_prompt("greeting", "system_prompt") == ""


def test_missing_placeholder_returns_raw_template(manager):
    assert manager.get_user_prompt("greeting", other="x") == "Hello {name}"


def test_config_params_are_layered(manager):
    assert manager.get_config_params("gemini") == {"temperature": 0.3, "max_tokens": 100}
    assert manager.get_config_params("local") == {"temperature": 0.1, "max_tokens": 100}
    assert manager.get_config_params("local", "title") == {"temperature": 0.1, "max_tokens": 20}


def test_missing_file_yields_empty_manager(tmp_path):
    manager = PromptManager(config_path=str(tmp_path / "absent.toml"))

    assert manager.get_user_prompt("greeting", name="x") == ""
    assert manager.get_config_params("local") == {}


def test_bundled_prompts_render():
    assert "05:00" in get_transcription_prompt("05:00")

    addendum = get_correction_addendum("Card 2 overlaps card 1")
    assert addendum.startswith("\n\n")
    assert "Card 2 overlaps card 1" in addendum
