import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from agentkit.canonical_json import CanonicalJsonTypeError, canonical_dumps, fingerprint


class TestCanonicalJson(unittest.TestCase):
    def test_nested_keys_sorted(self) -> None:
        obj = {"b": 1, "a": {"d": 4, "c": 3}}
        self.assertEqual(canonical_dumps(obj), '{"a":{"c":3,"d":4},"b":1}')

    def test_list_order_preserved(self) -> None:
        self.assertEqual(canonical_dumps({"rows": [2, 1, 3]}), '{"rows":[2,1,3]}')

    def test_non_ascii_preserved(self) -> None:
        out = canonical_dumps({"city": "Zürich"})
        self.assertIn("Zürich", out)

    def test_unsupported_type_raises(self) -> None:
        with self.assertRaises(CanonicalJsonTypeError):
            canonical_dumps({"tags": {"a", "b"}})

    def test_non_string_key_raises(self) -> None:
        with self.assertRaises(CanonicalJsonTypeError):
            canonical_dumps({1: "x"})

    def test_reject_nan(self) -> None:
        with self.assertRaises(ValueError):
            canonical_dumps({"score": float("nan")})


class TestFingerprint(unittest.TestCase):
    def test_independent_of_key_order(self) -> None:
        self.assertEqual(fingerprint({"a": 1, "b": 2}, "json"), fingerprint({"b": 2, "a": 1}, "json"))

    def test_parts_matter(self) -> None:
        self.assertNotEqual(fingerprint("sales", [1], "json"), fingerprint("sales", [1], "csv"))

    def test_prefix(self) -> None:
        self.assertTrue(fingerprint([]).startswith("sha256:"))


if __name__ == "__main__":
    unittest.main()
