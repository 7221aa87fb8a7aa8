import json
import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from document_generation import DocumentError, DocumentGenerationModule, title_case
from module_registry import ModuleRegistry

TEMPLATES = {
    "report": {
        "name": "Weekly report",
        "variables": {"team": "Ops"},
        "sections": [
            {"id": "summary", "title": "Summary", "type": "text", "required": True, "template": "{{ team }}: {{ content }}"},
            {"id": "items", "type": "list"},
            {"id": "rows", "title": "Rows", "type": "table"},
            {"id": "notes", "type": "text"},
        ],
    },
    "inventory": {"sections": [{"id": "rows", "type": "table"}, {"id": "config", "type": "code"}]},
}


class TestDocumentGeneration(unittest.TestCase):
    def setUp(self) -> None:
        self.module = DocumentGenerationModule({"templates": TEMPLATES})

    def test_markdown_template_sections(self) -> None:
        result = self.module.invoke(
            {
                "format": "markdown",
                "title": "Weekly {{ team }}",
                "template_id": "report",
                "content": {"summary": "all good", "items": ["a", "b"], "rows": [{"k": 1, "v": "x"}]},
                "sections": ["items", "rows", "notes"],
            }
        )
        self.assertEqual(
            result["document"],
            "# Weekly Ops\n\n"
            "## Summary\n\nOps: all good\n\n"
            "## Items\n\n- a\n- b\n\n"
            "## Rows\n\n| k | v |\n|------|------|\n| 1 | x |\n\n"
            "## Notes\n\n[Notes content will be added here]",
        )
        meta = result["metadata"]
        self.assertEqual(meta["template_used"], "report")
        self.assertEqual(meta["sections"], ["Weekly Ops", "Summary", "Items", "Rows", "Notes"])
        self.assertEqual(meta["character_count"], len(result["document"]))

    def test_optional_sections_need_selection(self) -> None:
        result = self.module.invoke(
            {"format": "markdown", "title": "R", "template_id": "report", "content": {"summary": "s"}, "sections": []}
        )
        self.assertEqual(result["metadata"]["sections"], ["R", "Summary"])

    def test_required_section_missing(self) -> None:
        with self.assertRaises(DocumentError) as ctx:
            self.module.invoke({"format": "markdown", "title": "R", "template_id": "report", "content": {"items": ["a"]}})
        self.assertEqual(ctx.exception.code, "SECTION_REQUIRED")
        self.assertEqual(ctx.exception.path, "content.summary")

    def test_html_escapes_content(self) -> None:
        result = self.module.invoke({"format": "html", "title": "Notes & more", "content": {"bodyText": "<b>hi</b>"}})
        document = result["document"]
        self.assertTrue(document.startswith("<!DOCTYPE html>"))
        self.assertIn("<title>Notes &amp; more</title>", document)
        self.assertIn("<h2>Body Text</h2>", document)
        self.assertIn("<p>&lt;b&gt;hi&lt;/b&gt;</p>", document)
        self.assertNotIn("<b>hi</b>", document)

    def test_confluence_table_and_code(self) -> None:
        result = self.module.invoke(
            {
                "format": "confluence",
                "title": "Inventory",
                "template_id": "inventory",
                "content": {"rows": [{"sku": "A1", "qty": 3}], "config": {"b": 1}},
            }
        )
        self.assertEqual(
            result["document"],
            "h1. Inventory\n\nh2. Rows\n\n||sku||qty||\n|A1|3|\n\nh2. Config\n\n{code}\n{\n  \"b\": 1\n}\n{code}",
        )

    def test_table_of_scalars_and_empty(self) -> None:
        result = self.module.invoke(
            {"format": "markdown", "title": "I", "template_id": "inventory", "content": {"rows": ["x", "y"]}, "sections": ["rows"]}
        )
        self.assertIn("| Item |\n|------|\n| x |\n| y |", result["document"])

    def test_json_envelope(self) -> None:
        result = self.module.invoke({"format": "json", "title": "T", "content": {"a": "x"}})
        envelope = json.loads(result["document"])
        self.assertEqual(envelope["title"], "T")
        self.assertEqual(envelope["content"], "T\n\nA\n\nx")
        self.assertEqual(envelope["metadata"]["format"], "json")
        self.assertTrue(envelope["metadata"]["generated_at"].endswith("Z"))

    def test_request_errors(self) -> None:
        module = DocumentGenerationModule({"supported_formats": ["markdown"]})
        for request, code in (
            ({"format": "html", "title": "T", "content": {}}, "FORMAT_UNSUPPORTED"),
            ({"format": "markdown", "title": " ", "content": {}}, "TITLE_REQUIRED"),
            ({"format": "markdown", "title": "T", "content": "text"}, "MODULE_INPUT_INVALID"),
            ({"format": "markdown", "title": "T", "content": {"a": "{{ broken"}}, "DOCUMENT_TEMPLATE_INVALID"),
        ):
            with self.subTest(code=code):
                with self.assertRaises(DocumentError) as ctx:
                    module.invoke(request)
                self.assertEqual(ctx.exception.code, code)
        self.assertEqual(module.get_schema()["properties"]["format"]["enum"], ["markdown"])

    def test_max_length(self) -> None:
        module = DocumentGenerationModule({"max_document_length": 20})
        with self.assertRaises(DocumentError) as ctx:
            module.invoke({"format": "text", "title": "T", "content": {"a": "x" * 50}})
        self.assertEqual(ctx.exception.code, "DOCUMENT_TOO_LONG")

    def test_metadata_can_be_minimal(self) -> None:
        module = DocumentGenerationModule({"include_metadata": False})
        result = module.invoke({"format": "text", "title": "T", "content": {"a": "x"}})
        self.assertEqual(result["metadata"], {"format": "text", "template_used": None})

    def test_bad_template_config(self) -> None:
        for sections, path in (
            ([{"title": "No id"}], "templates.t.sections[0].id"),
            ([{"id": "clip", "type": "video"}], "templates.t.sections[0].type"),
        ):
            with self.subTest(path=path):
                with self.assertRaises(DocumentError) as ctx:
                    DocumentGenerationModule({"templates": {"t": {"sections": sections}}})
                self.assertEqual(ctx.exception.code, "DOCUMENT_CONFIG_INVALID")
                self.assertEqual(ctx.exception.path, path)

    def test_title_case(self) -> None:
        self.assertEqual(title_case("executiveSummary"), "Executive Summary")
        self.assertEqual(title_case("next_steps"), "Next steps")

    def test_registry_invoke(self) -> None:
        registry = ModuleRegistry()
        result = registry.invoke("document-generation", {"format": "markdown", "title": "T", "content": {"a": "x"}})
        self.assertTrue(result["ok"])
        self.assertEqual(result["result"]["document"], "# T\n\n## A\n\nx")
        failed = registry.invoke("document-generation", {"format": "pdf", "title": "T", "content": {}})
        self.assertEqual(failed["errors"][0]["code"], "FORMAT_UNSUPPORTED")


if __name__ == "__main__":
    unittest.main()
