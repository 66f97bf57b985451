#!/usr/bin/env python3
"""
tests/test_llm_resolver.py

Unit tests for the AI fallback resolver.

Principles tested:
  - Only fields from the candidate list are ever returned
  - Replies in markdown fences or wrapped in prose are still parsed
  - Anything that does not match the response schema yields no suggestions
  - Anthropic API is mocked; no real network calls
"""

from __future__ import annotations

import unittest
from unittest.mock import MagicMock, patch

from field_mapper.llm_resolver import (
    SYSTEM_PROMPT,
    AIFallbackResolver,
    AIMapping,
    AnthropicCompletionClient,
    build_prompt,
    extract_json,
)


TARGET_FIELDS = ["waste_description", "quantity", "unit", "destination_name"]


def _resolver(reply: str) -> AIFallbackResolver:
    client = MagicMock()
    client.complete.return_value = reply
    return AIFallbackResolver(client)


class TestExtractJson(unittest.TestCase):

    def test_plain_object(self):
        self.assertEqual(extract_json('{"mappings": []}'), {"mappings": []})

    def test_markdown_fence(self):
        text = 'Here you go:\n```json\n{"mappings": [{"sourceField": "a"}]}\n```\nThanks'
        self.assertEqual(extract_json(text), {"mappings": [{"sourceField": "a"}]})

    def test_fence_without_language(self):
        self.assertEqual(extract_json("```\n[1, 2]\n```"), [1, 2])

    def test_surrounding_prose(self):
        self.assertEqual(extract_json('Result: {"a": 1} hope it helps'), {"a": 1})

    def test_no_json_raises(self):
        with self.assertRaises(ValueError):
            extract_json("I could not find any matches.")

    def test_broken_json_raises(self):
        with self.assertRaises(ValueError):
            extract_json('{"mappings": [}')

    def test_none_raises(self):
        with self.assertRaises(ValueError):
            extract_json(None)


class TestResolveUnmapped(unittest.TestCase):

    def test_valid_reply(self):
        resolver = _resolver(
            '{"mappings": [{"sourceField": "Gerador", "targetField": "destination_name", '
            '"confidence": 0.65, "transformation": null}]}'
        )
        result = resolver.resolve_unmapped(["Gerador"], TARGET_FIELDS, "waste_logs", "c1")
        self.assertEqual(result, [AIMapping("Gerador", "destination_name", 0.65)])

    def test_single_batched_call(self):
        resolver = _resolver('{"mappings": []}')
        resolver.resolve_unmapped(["A", "B", "C"], TARGET_FIELDS, "waste_logs")
        resolver.client.complete.assert_called_once()
        system_prompt, user_prompt = resolver.client.complete.call_args[0]
        self.assertEqual(system_prompt, SYSTEM_PROMPT)
        for header in ("A", "B", "C"):
            self.assertIn(f"  - {header}", user_prompt)

    def test_null_target_is_dropped(self):
        resolver = _resolver('{"mappings": [{"sourceField": "XYZ123", "targetField": null, "confidence": 0}]}')
        self.assertEqual(resolver.resolve_unmapped(["XYZ123"], TARGET_FIELDS, "waste_logs"), [])

    def test_invented_field_is_dropped(self):
        resolver = _resolver(
            '{"mappings": ['
            '{"sourceField": "Peso", "targetField": "weight_kg", "confidence": 0.9},'
            '{"sourceField": "Un", "targetField": "unit", "confidence": 0.8}'
            ']}'
        )
        result = resolver.resolve_unmapped(["Peso", "Un"], TARGET_FIELDS, "waste_logs")
        self.assertEqual([r.target_field for r in result], ["unit"])

    def test_unasked_header_is_dropped(self):
        resolver = _resolver('{"mappings": [{"sourceField": "Other", "targetField": "unit", "confidence": 0.8}]}')
        self.assertEqual(resolver.resolve_unmapped(["Un"], TARGET_FIELDS, "waste_logs"), [])

    def test_confidence_is_clamped(self):
        resolver = _resolver(
            '{"mappings": ['
            '{"sourceField": "A", "targetField": "unit", "confidence": 1.7},'
            '{"sourceField": "B", "targetField": "quantity", "confidence": -0.2}'
            ']}'
        )
        result = resolver.resolve_unmapped(["A", "B"], TARGET_FIELDS, "waste_logs")
        self.assertEqual([r.confidence for r in result], [1.0, 0.0])

    def test_snake_case_keys_are_accepted(self):
        resolver = _resolver('{"mappings": [{"source_field": "A", "target_field": "unit", "confidence": 0.5}]}')
        result = resolver.resolve_unmapped(["A"], TARGET_FIELDS, "waste_logs")
        self.assertEqual(result[0].target_field, "unit")

    def test_schema_mismatch_yields_nothing(self):
        for reply in (
            '{"results": []}',
            '{"mappings": {"A": "unit"}}',
            '{"mappings": [{"targetField": "unit"}]}',
            '{"mappings": [{"sourceField": "A", "targetField": "unit", "confidence": "high"}]}',
            "no json at all",
        ):
            with self.subTest(reply=reply):
                self.assertEqual(_resolver(reply).resolve_unmapped(["A"], TARGET_FIELDS, "waste_logs"), [])

    def test_transport_error_propagates(self):
        client = MagicMock()
        client.complete.side_effect = ConnectionError("refused")
        with self.assertRaises(ConnectionError):
            AIFallbackResolver(client).resolve_unmapped(["A"], TARGET_FIELDS, "waste_logs")

    def test_empty_inputs_skip_the_call(self):
        resolver = _resolver('{"mappings": []}')
        self.assertEqual(resolver.resolve_unmapped([], TARGET_FIELDS, "waste_logs"), [])
        self.assertEqual(resolver.resolve_unmapped(["A"], [], "waste_logs"), [])
        resolver.client.complete.assert_not_called()


class TestBuildPrompt(unittest.TestCase):

    def test_contents(self):
        prompt = build_prompt(["Gerador", "Obs"], TARGET_FIELDS, "waste_logs", "c1")
        self.assertTrue(prompt.startswith("Company: c1\n"))
        self.assertIn("TARGET ENTITY: waste_logs", prompt)
        self.assertIn("SPREADSHEET HEADERS TO MAP (2):", prompt)
        self.assertIn("CANDIDATE TARGET FIELDS (4):", prompt)
        self.assertIn("  - destination_name", prompt)

    def test_without_company(self):
        self.assertNotIn("Company:", build_prompt(["A"], ["unit"], "waste_logs"))


class TestAnthropicCompletionClient(unittest.TestCase):

    @patch("anthropic.Anthropic")
    def test_client_is_built_once_without_retries(self, mock_anthropic):
        block = MagicMock()
        block.text = '{"mappings": []}'
        mock_anthropic.return_value.messages.create.return_value = MagicMock(content=[block])

        client = AnthropicCompletionClient(
            auth_token="tok", base_url="https://gateway.example/v1", model="m", timeout=5.0
        )
        self.assertEqual(client.complete("sys", "user"), '{"mappings": []}')
        client.complete("sys", "user again")

        mock_anthropic.assert_called_once_with(
            api_key=None,
            auth_token="tok",
            base_url="https://gateway.example/v1",
            timeout=5.0,
            max_retries=0,
        )
        kwargs = mock_anthropic.return_value.messages.create.call_args_list[0].kwargs
        self.assertEqual(kwargs["model"], "m")
        self.assertEqual(kwargs["system"], "sys")
        self.assertEqual(kwargs["messages"], [{"role": "user", "content": "user"}])
        self.assertEqual(kwargs["temperature"], 0.0)


if __name__ == "__main__":
    unittest.main()
