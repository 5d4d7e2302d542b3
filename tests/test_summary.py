"""Tests for ``jj log`` head output parsing and status formatting."""

from __future__ import annotations

import unittest
from types import MappingProxyType

from jjwatch.summary import CommitSummary, format_summary_string, parse_head_output


class ParseHeadOutputTests(unittest.TestCase):
    def test_prefix_length_is_what_remainder_leaves_of_eight(self) -> None:
        summary = parse_head_output("abcdefgh rest")

        assert summary is not None
        self.assertEqual(summary.change_id_prefix, "abcd")
        self.assertEqual(summary.change_id_rest, "rest")
        self.assertEqual(summary.change_id, "abcdrest")

    def test_padded_short_prefix(self) -> None:
        summary = parse_head_output("kx       ywzqlm")

        assert summary is not None
        self.assertEqual(summary.change_id_prefix, "kx")
        self.assertEqual(summary.change_id_rest, "ywzqlm")

    def test_overlong_remainder_yields_empty_prefix(self) -> None:
        summary = parse_head_output("k abcdefghij")

        assert summary is not None
        self.assertEqual(summary.change_id_prefix, "")
        self.assertEqual(summary.change_id_rest, "abcdefghij")

    def test_property_line_fills_flags_and_bookmarks(self) -> None:
        output = (
            "qpv      ztmlk\n"
            "empty=true conflict=false divergent=false immutable=false "
            "local=main,feature remote=main@origin"
        )

        summary = parse_head_output(output)

        assert summary is not None
        self.assertEqual(summary.change_id_prefix, "qpv")
        self.assertEqual(
            dict(summary.properties),
            {"empty": True, "conflict": False, "divergent": False, "immutable": False},
        )
        self.assertEqual(summary.local_bookmarks, ("main", "feature"))
        self.assertEqual(summary.remote_bookmarks, ("main@origin",))

    def test_empty_bookmark_lists_stay_empty(self) -> None:
        summary = parse_head_output("qpv      ztmlk\nempty=false local= remote=")

        assert summary is not None
        self.assertEqual(summary.local_bookmarks, ())
        self.assertEqual(summary.remote_bookmarks, ())

    def test_malformed_output_is_rejected(self) -> None:
        for output in ("", "\n", "   ", "abcdefgh", "abcdefgh \nempty=true"):
            with self.subTest(output=output):
                self.assertIsNone(parse_head_output(output))


class CommitSummaryTests(unittest.TestCase):
    def test_default_properties_are_empty_and_read_only(self) -> None:
        summary = CommitSummary(change_id_prefix="kx", change_id_rest="ywzqlm")

        self.assertEqual(dict(summary.properties), {})
        self.assertEqual(summary.change_id, "kxywzqlm")
        with self.assertRaises(TypeError):
            summary.properties["empty"] = True  # type: ignore[index]

    def test_default_properties_compare_equal_across_instances(self) -> None:
        first = CommitSummary(change_id_prefix="kx", change_id_rest="ywzqlm")
        second = CommitSummary(change_id_prefix="kx", change_id_rest="ywzqlm")
        self.assertEqual(first, second)


class FormatSummaryStringTests(unittest.TestCase):
    def test_plain_string_lists_bookmarks_and_flags(self) -> None:
        summary = CommitSummary(
            change_id_prefix="kx",
            change_id_rest="ywzqlm",
            properties=MappingProxyType({"empty": True, "conflict": True, "immutable": True}),
            local_bookmarks=("main",),
        )

        self.assertEqual(format_summary_string(summary), "kxywzqlm main (conflict, empty)")

    def test_missing_summary_formats_as_empty_string(self) -> None:
        self.assertEqual(format_summary_string(None), "")

    def test_color_wraps_prefix_and_rest_in_ansi(self) -> None:
        summary = CommitSummary(change_id_prefix="kx", change_id_rest="ywzqlm")

        rendered = format_summary_string(summary, color=True)

        self.assertIn("\x1b[", rendered)
        self.assertIn("kx", rendered)
        self.assertIn("ywzqlm", rendered)
        self.assertLess(rendered.index("kx"), rendered.index("ywzqlm"))


if __name__ == "__main__":
    unittest.main()
