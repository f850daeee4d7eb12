"""
Tests for json_repair.py - tolerant parsing of model output.
"""
from pulse.services.json_repair import (
    Fallback,
    Parsed,
    escape_newlines_in_strings,
    extract_outer,
    parse_json_array,
    parse_json_object,
    remove_trailing_commas,
    strip_code_fence,
)


class TestRepairPasses:
    def test_strip_code_fence(self):
        assert strip_code_fence('```json\n[1, 2]\n```') == "[1, 2]"
        assert strip_code_fence("```\n{}\n```") == "{}"
        assert strip_code_fence("plain") == "plain"

    def test_extract_outer(self):
        assert extract_outer('Sure! Here it is: {"a": 1} Hope that helps', "{", "}") == '{"a": 1}'
        assert extract_outer("no brackets", "[", "]") == "no brackets"

    def test_remove_trailing_commas(self):
        assert remove_trailing_commas('{"a": [1, 2,], "b": 3,}') == '{"a": [1, 2], "b": 3}'

    def test_escape_newlines_only_inside_strings(self):
        text = '{\n"a": "line one\nline two"\n}'
        assert escape_newlines_in_strings(text) == '{\n"a": "line one\\nline two"\n}'


class TestParseJsonArray:
    def test_plain_array(self):
        result = parse_json_array('[{"id": "1", "sentiment": "positive"}]')
        assert isinstance(result, Parsed)
        assert result.value == [{"id": "1", "sentiment": "positive"}]

    def test_fenced_with_prose_and_trailing_comma(self):
        text = 'Here you go:\n```json\n[{"id": "1", "sentiment": "neutral"},]\n```'
        result = parse_json_array(text)
        assert isinstance(result, Parsed)
        assert result.value == [{"id": "1", "sentiment": "neutral"}]

    def test_empty_input_falls_back(self):
        assert isinstance(parse_json_array(""), Fallback)
        assert isinstance(parse_json_array(None), Fallback)
        assert isinstance(parse_json_array("   "), Fallback)

    def test_unrepairable_falls_back_with_reason(self):
        result = parse_json_array("I cannot classify these posts.")
        assert isinstance(result, Fallback)
        assert result.reason

    def test_object_where_array_expected(self):
        result = parse_json_array('{"id": "1"}')
        assert isinstance(result, Fallback)


class TestParseJsonObject:
    def test_raw_newline_inside_string(self):
        text = '{"interpretation": "First line\nsecond line", "keyThemes": []}'
        result = parse_json_object(text)
        assert isinstance(result, Parsed)
        assert result.value["interpretation"] == "First line\nsecond line"

    def test_surrounding_prose(self):
        result = parse_json_object('Analysis follows. {"a": 1, "b": [2, 3]} End.')
        assert isinstance(result, Parsed)
        assert result.value == {"a": 1, "b": [2, 3]}

    def test_truncated_object_falls_back(self):
        result = parse_json_object('{"interpretation": "cut off')
        assert isinstance(result, Fallback)
