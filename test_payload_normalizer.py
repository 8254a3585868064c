import sys
from datetime import datetime

import pytest

from payload_normalizer import (
    CONVERSATION_COLUMNS,
    FREE_FORM_COLUMNS,
    ConversationPayload,
    FreeFormPayload,
    TabularPayload,
    classify_payload,
    flatten_payload,
    normalize_payload,
    render_value,
)


class TestClassifyPayload:
    """
    Tests for payload shape detection.
    """

    @pytest.mark.parametrize(
        "payload, expected_type",
        [
            ({"conversations": []}, ConversationPayload),
            ({"conversations": [{"role": "user"}], "data": [{"a": 1}]}, ConversationPayload),
            ({"data": [{"a": 1}]}, TabularPayload),
            ({"conversations": "not a list", "data": []}, TabularPayload),
            ({"data": {"a": 1}}, FreeFormPayload),
            ({"title": "x"}, FreeFormPayload),
            ([1, 2], FreeFormPayload),
            ("text", FreeFormPayload),
            (None, FreeFormPayload),
        ],
        ids=[
            "empty-conversations", "conversations-win-over-data", "data-list",
            "conversations-not-list", "data-not-list", "plain-object", "top-level-list",
            "string", "none",
        ]
    )
    def test_detection_order(self, payload, expected_type):
        """
        Test that the first matching shape wins and only list-valued fields match.
        """
        assert isinstance(classify_payload(payload), expected_type)


class TestConversationShape:
    """
    Tests for conversation payloads.
    """

    def test_one_row_per_turn_in_order(self):
        payload = {
            "conversations": [
                {"timestamp": "2024-01-01T12:00:00Z", "role": "user", "content": "Hello", "tokens": 5},
                {"timestamp": "2024-01-01T12:00:05Z", "role": "assistant", "content": "Hi!", "tokens": 8},
                {"timestamp": "2024-01-01T12:00:09Z", "role": "user", "content": "Bye", "tokens": 1},
            ]
        }

        table = normalize_payload(payload)

        assert table.kind == "conversation"
        assert table.columns == CONVERSATION_COLUMNS
        assert [row["content"] for row in table.rows] == ["Hello", "Hi!", "Bye"]
        assert table.rows[1] == {
            "timestamp": "2024-01-01T12:00:05Z",
            "role": "assistant",
            "content": "Hi!",
            "tokens": 8,
        }

    def test_column_layout(self):
        table = normalize_payload({"conversations": []})

        assert [c.header for c in table.columns] == ["Timestamp", "Role", "Content", "Token Count"]
        assert [c.key for c in table.columns] == ["timestamp", "role", "content", "tokens"]
        assert [c.width for c in table.columns] == [20, 15, 80, 15]
        assert table.rows == []

    def test_defaults_for_missing_fields(self):
        """
        Test that absent fields get "unknown", "", 0 and a current UTC timestamp.
        """
        table = normalize_payload({"conversations": [{}]})

        row = table.rows[0]
        assert row["role"] == "unknown"
        assert row["content"] == ""
        assert row["tokens"] == 0
        assert row["timestamp"].endswith("Z")
        datetime.fromisoformat(row["timestamp"].replace("Z", "+00:00"))

    def test_fallback_fields(self):
        """
        Test that message is used for empty content and token_count takes precedence over tokens.
        """
        payload = {
            "conversations": [
                {"message": "from message", "token_count": 12, "tokens": 3},
                {"content": "", "message": "fallback", "token_count": 0, "tokens": 7},
            ]
        }

        rows = normalize_payload(payload).rows

        assert rows[0]["content"] == "from message"
        assert rows[0]["tokens"] == 12
        assert rows[1]["content"] == "fallback"
        assert rows[1]["tokens"] == 7

    def test_non_mapping_turns_use_defaults(self):
        rows = normalize_payload({"conversations": ["hello", None, 3]}).rows

        assert len(rows) == 3
        assert all(row["role"] == "unknown" and row["content"] == "" for row in rows)


class TestTabularShape:
    """
    Tests for record-list payloads.
    """

    def test_columns_come_from_first_record(self):
        payload = {
            "data": [
                {"name": "John", "age": 30, "city": "New York"},
                {"name": "Jane", "age": 25, "city": "Los Angeles"},
            ]
        }

        table = normalize_payload(payload)

        assert table.kind == "tabular"
        assert [c.key for c in table.columns] == ["name", "age", "city"]
        assert [c.header for c in table.columns] == ["Name", "Age", "City"]
        assert all(c.width == 20 for c in table.columns)
        assert table.rows[1] == {"name": "Jane", "age": 25, "city": "Los Angeles"}

    def test_missing_keys_empty_and_extra_keys_dropped(self):
        payload = {
            "data": [
                {"name": "John", "age": 30},
                {"name": "Jane", "email": "jane@example.com"},
            ]
        }

        rows = normalize_payload(payload).rows

        assert rows[1] == {"name": "Jane", "age": None}
        assert all(len(row) == 2 for row in rows)

    def test_empty_list_gives_empty_table(self):
        table = normalize_payload({"data": []})

        assert table.columns == []
        assert table.rows == []

    def test_first_record_not_a_mapping(self):
        table = normalize_payload({"data": ["a", {"name": "x"}]})

        assert table.columns == []
        assert table.rows == [{}, {}]

    def test_label_capitalizes_first_character_only(self):
        table = normalize_payload({"data": [{"firstName": "A", "": "empty"}]})

        assert [c.header for c in table.columns] == ["FirstName", ""]


class TestFreeFormShape:
    """
    Tests for flattening of arbitrary payloads.
    """

    def test_nested_mapping_and_list(self):
        table = normalize_payload({"a": {"b": 1}, "c": [1, 2]})

        assert table.kind == "free_form"
        assert table.columns == FREE_FORM_COLUMNS
        assert table.rows == [
            {"property": "a.b", "value": "1"},
            {"property": "c", "value": "[1,2]"},
        ]

    def test_key_traversal_order(self):
        payload = {
            "title": "My ChatGPT Session",
            "metadata": {"tokens_used": 50, "inner": {"deep": True}, "duration": "5 minutes"},
            "user": "john_doe",
        }

        properties = [row["property"] for row in flatten_payload(payload)]

        assert properties == [
            "title",
            "metadata.tokens_used",
            "metadata.inner.deep",
            "metadata.duration",
            "user",
        ]

    def test_empty_nested_mapping_emits_no_row(self):
        assert flatten_payload({"a": {}, "b": 1}) == [{"property": "b", "value": "1"}]

    def test_top_level_list_uses_indices(self):
        assert flatten_payload(["x", {"y": 2}]) == [
            {"property": "0", "value": "x"},
            {"property": "1.y", "value": "2"},
        ]

    @pytest.mark.parametrize("payload", [None, 42, "text", True])
    def test_top_level_scalar_yields_no_rows(self, payload):
        assert normalize_payload(payload).rows == []

    def test_deep_nesting_beyond_recursion_limit(self):
        """
        Test that flattening does not depend on the interpreter's recursion limit.
        """
        depth = sys.getrecursionlimit() + 500
        payload = {"leaf": "bottom"}
        for _ in range(depth):
            payload = {"k": payload}

        rows = flatten_payload(payload)

        assert len(rows) == 1
        assert rows[0]["property"] == ".".join(["k"] * depth + ["leaf"])
        assert rows[0]["value"] == "bottom"


class TestRenderValue:
    """
    Tests for leaf value rendering.
    """

    @pytest.mark.parametrize(
        "value, expected",
        [
            ([1, 2], "[1,2]"),
            (["Hello", "How are you?"], '["Hello","How are you?"]'),
            ([{"a": None}], '[{"a":null}]'),
            (None, ""),
            (True, "true"),
            (False, "false"),
            (3, "3"),
            (2.5, "2.5"),
            (1.0, "1"),
            ([1.0, 2.5], "[1,2.5]"),
            ([{"n": 3.0}], '[{"n":3}]'),
            ("text", "text"),
        ],
        ids=[
            "int-list", "str-list", "nested-list", "none", "true", "false", "int", "float",
            "whole-float", "whole-float-list", "whole-float-nested", "str",
        ]
    )
    def test_render(self, value, expected):
        assert render_value(value) == expected
