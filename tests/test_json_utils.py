import pytest

from ideaforge.services.json_utils import first_str, parse_json_array, parse_json_object, str_list


class TestParseJsonArray:
    def test_bare_array(self):
        assert parse_json_array('[{"a": 1}]') == [{"a": 1}]

    def test_first_array_property_of_object(self):
        assert parse_json_array('{"count": 2, "variations": [1, 2]}') == [1, 2]

    def test_fenced_block_with_trailing_comma(self):
        response = 'Here you go:\n```json\n[{"title": "A"},]\n```'

        assert parse_json_array(response) == [{"title": "A"}]

    def test_array_embedded_in_prose(self):
        assert parse_json_array('Sure! [1, 2, 3] Hope that helps.') == [1, 2, 3]

    def test_no_array_raises(self):
        with pytest.raises(ValueError):
            parse_json_array("I cannot help with that.")


class TestParseJsonObject:
    def test_object_embedded_in_prose(self):
        assert parse_json_object('Result: {"mergedTitle": "X"} done') == {"mergedTitle": "X"}

    def test_array_is_not_an_object(self):
        with pytest.raises(ValueError):
            parse_json_object("[1, 2]")


class TestHelpers:
    def test_first_str_prefers_first_present_key(self):
        data = {"merged_title": "snake", "mergedTitle": ""}

        assert first_str(data, "mergedTitle", "merged_title") == "snake"
        assert first_str(data, "missing", default="fallback") == "fallback"

    def test_str_list_accepts_csv_and_lists(self):
        assert str_list("a, b,,c") == ["a", "b", "c"]
        assert str_list(["x", " ", 3]) == ["x", "3"]
        assert str_list(None) == []
