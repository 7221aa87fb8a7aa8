import os
import sys
import unittest
import xml.etree.ElementTree as ET

import yaml


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from output_format import OutputFormatError, format_output


ROWS = [{"id": 1, "name": "Ada"}, {"id": 2, "tags": ["a", "b"], "note": None}]


class TestOutputFormat(unittest.TestCase):
    def test_json_passthrough(self) -> None:
        self.assertIs(format_output(ROWS, "json"), ROWS)

    def test_csv_header_union(self) -> None:
        out = format_output(ROWS, "csv")
        lines = out.strip().split("\n")
        self.assertEqual(lines[0], "id,name,tags,note")
        self.assertEqual(lines[1], "1,Ada,,")
        self.assertEqual(lines[2], '2,,"[""a"",""b""]",')

    def test_xml_structure(self) -> None:
        out = format_output([{"id": 1, "first name": "Ada"}], "xml")
        self.assertTrue(out.startswith("<?xml"))
        root = ET.fromstring(out.split("\n", 1)[1])
        self.assertEqual(root.tag, "data")
        item = root.find("item")
        self.assertEqual(item.find("id").text, "1")
        self.assertEqual(item.find("field").get("name"), "first name")

    def test_yaml_round_trip(self) -> None:
        self.assertEqual(yaml.safe_load(format_output(ROWS, "yaml")), ROWS)

    def test_unknown_format(self) -> None:
        with self.assertRaises(OutputFormatError):
            format_output(ROWS, "parquet")


if __name__ == "__main__":
    unittest.main()
