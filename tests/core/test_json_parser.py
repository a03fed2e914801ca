import pytest

from dayline.core.errors import SchemaParseError
from dayline.core.json_parser import (
    parse_json_from_response,
    parse_model,
    parse_model_list,
)
from dayline.models import TaxonomyDescriptor, TranscriptSegment


@pytest.mark.parametrize(
    "input_txt, expected_len",
    [
        ('[ {"a":1} ]', 1),
        ("```json\n[1,2,3]\n```", 3),
        ('Here you go:\n[{"a": 1}, {"b": 2}]\nHope that helps.', 2),
        ('[{"a": 1}, {"b": 2},]', 2),
    ],
)
def test_parse_json_from_response(input_txt, expected_len):
    parsed = parse_json_from_response(input_txt)
    assert isinstance(parsed, list)
    assert len(parsed) == expected_len


def test_typographic_quotes_are_normalized():
    assert parse_json_from_response("{“title”: “Coding”}") == {"title": "Coding"}


def test_empty_reply_is_none():
    assert parse_json_from_response("   ") is None
    assert parse_json_from_response(None) is None


def test_parse_model_list_with_camel_case_keys():
    segments = parse_model_list(
        '[{"startTimestamp": "00:00", "endTimestamp": "01:00", "description": "Mail"}]',
        TranscriptSegment,
    )
    assert segments[0].end_timestamp == "01:00"


def test_parse_model_list_with_wrapper_key():
    segments = parse_model_list(
        '{"observations": [{"startTimestamp": "00:00", "endTimestamp": "01:00", "description": "Mail"}]}',
        TranscriptSegment,
        key="observations",
    )
    assert len(segments) == 1

    with pytest.raises(SchemaParseError):
        parse_model_list('{"other": []}', TranscriptSegment, key="observations")


def test_parse_model_list_rejects_schema_mismatch():
    with pytest.raises(SchemaParseError):
        parse_model_list('[{"startTimestamp": "00:00"}]', TranscriptSegment)


def test_parse_model():
    descriptor = parse_model('{"id": "work", "name": "Work"}', TaxonomyDescriptor)
    assert descriptor.name == "Work"
