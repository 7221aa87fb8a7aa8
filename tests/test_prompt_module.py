import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from prompt_module import PromptError, PromptModule, estimate_tokens


class TestPromptModule(unittest.TestCase):
    def setUp(self) -> None:
        self.module = PromptModule(
            {
                "templates": {"brief": "Write a {{tone}} brief for {{ product }} using {{facts}}."},
                "variables": {"tone": "friendly"},
                "context_settings": {"max_tokens": 200, "include_history": True, "history_length": 2},
            }
        )

    def test_template_substitution(self) -> None:
        result = self.module.invoke({"template_id": "brief", "variables": {"product": "Octo", "facts": {"users": 3}}})
        self.assertEqual(result["processed_prompt"], 'Write a friendly brief for Octo using {"users": 3}.')
        self.assertEqual(result["metadata"]["template_used"], "brief")
        self.assertEqual(result["metadata"]["variables_replaced"], 3)
        self.assertFalse(result["metadata"]["context_included"])

    def test_history_prefix_keeps_last_items(self) -> None:
        result = self.module.invoke({"prompt": "Go", "context": [{"n": 1}, {"n": 2}, {"n": 3}]})
        self.assertEqual(result["processed_prompt"], 'Context 1: {"n": 2}\nContext 2: {"n": 3}\n\nGo')
        self.assertTrue(result["metadata"]["context_included"])

    def test_missing_variables_reported(self) -> None:
        result = self.module.invoke({"prompt": "Hi {{name}}"})
        self.assertEqual(result["processed_prompt"], "Hi ")
        self.assertEqual(result["metadata"]["missing_variables"], ["name"])

    def test_token_limit(self) -> None:
        with self.assertRaises(PromptError) as ctx:
            self.module.invoke({"prompt": "x" * 1000})
        self.assertEqual(ctx.exception.code, "PROMPT_TOO_LONG")

    def test_unknown_template(self) -> None:
        with self.assertRaises(PromptError):
            self.module.invoke({"template_id": "nope"})

    def test_template_syntax_error(self) -> None:
        with self.assertRaises(PromptError) as ctx:
            self.module.invoke({"prompt": "Hello {{ name "})
        self.assertEqual(ctx.exception.code, "PROMPT_TEMPLATE_INVALID")
        self.assertEqual(ctx.exception.path, "prompt")

    def test_estimate_tokens(self) -> None:
        self.assertEqual(estimate_tokens("abcde"), 2)
        self.assertEqual(estimate_tokens(""), 0)


if __name__ == "__main__":
    unittest.main()
