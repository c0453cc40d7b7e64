from __future__ import annotations

import unittest

from staffcombine.engine.errors import InvalidSpliceAnchorError
from staffcombine.engine.splice import consolidate, merge, merge_entries
from staffcombine.engine.timeline import Articulation, Entry, Expression, MeasureRange, ScalarPayload
from tests.helpers import Q, WHOLE, entries, make_document, shape, timeline


class MergeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.document = make_document(staves=2)

    def _pair(self, base_specs, other_specs, *, document=None):
        document = document or self.document
        document.set_entries(1, 1, 1, entries(1, base_specs))
        document.set_entries(2, 1, 1, entries(1, other_specs))
        return timeline(document, 1), timeline(document, 2)

    def test_exact_matches_form_chords(self) -> None:
        base, other = self._pair([("C4", 2 * Q), (None, 2 * Q)], [("E4", 2 * Q), ("G4", 2 * Q)])
        merge(self.document, base, other)
        self.assertEqual(
            shape(base.entries), [(1, 0, 2 * Q, ("C4", "E4")), (1, 2 * Q, 2 * Q, ("G4",))]
        )

    def test_rest_into_note_changes_nothing(self) -> None:
        base, other = self._pair([("C4", WHOLE)], [(None, WHOLE)])
        merge(self.document, base, other)
        self.assertEqual(shape(base.entries), [(1, 0, WHOLE, ("C4",))])

    def test_rest_is_split_around_shorter_note(self) -> None:
        base, other = self._pair([("C4", Q), (None, 3 * Q)], [(None, Q), ("D4", Q), (None, 2 * Q)])
        merge(self.document, base, other)
        self.assertEqual(
            shape(base.entries),
            [(1, 0, Q, ("C4",)), (1, Q, Q, ("D4",)), (1, 2 * Q, 2 * Q, ())],
        )
        self.assertTrue(base.is_contiguous())

    def test_splice_into_rest_is_exact(self) -> None:
        base, other = self._pair([(None, WHOLE)], [(None, 2 * Q), ("A4", Q), (None, Q)])
        merge(self.document, base, other)
        self.assertEqual(
            shape(base.entries),
            [(1, 0, 2 * Q, ()), (1, 2 * Q, Q, ("A4",)), (1, 3 * Q, Q, ())],
        )

    def test_splice_into_note_lasts_to_anchor_end(self) -> None:
        base, other = self._pair([("C4", WHOLE)], [(None, Q), ("E4", Q), (None, 2 * Q)])
        merge(self.document, base, other)
        self.assertEqual(shape(base.entries), [(1, 0, Q, ("C4",)), (1, Q, 3 * Q, ("E4",))])

    def test_splice_takes_over_anchor_tie(self) -> None:
        document = make_document(staves=2, measures=2)
        document.set_entries(1, 1, 1, [Entry.note(1, 0, WHOLE, ["C4"], tie_forward=True)])
        document.set_entries(1, 1, 2, entries(2, [("C4", WHOLE)]))
        document.set_entries(2, 1, 1, entries(1, [(None, 2 * Q), ("E4", 2 * Q)]))
        base = timeline(document, 1, end=2)
        merge(document, base, timeline(document, 2, end=2))
        self.assertFalse(base.entries[0].tie_forward)
        self.assertTrue(base.entries[1].tie_forward)
        self.assertEqual(base.entries[1].pitches, ["E4"])

    def test_longer_note_absorbs_whole_rests(self) -> None:
        document = make_document(staves=2, length=3 * Q)
        base, other = self._pair([("C4", Q), (None, 2 * Q)], [("D4", 3 * Q)], document=document)
        merge(document, base, other)
        self.assertEqual(shape(base.entries), [(1, 0, 3 * Q, ("C4", "D4"))])

    def test_absorption_stops_at_following_rest(self) -> None:
        base, other = self._pair(
            [("C4", Q), (None, 2 * Q), (None, Q)], [("D4", 3 * Q), (None, Q)]
        )
        merge(self.document, base, other)
        self.assertEqual(
            shape(base.entries), [(1, 0, 3 * Q, ("C4", "D4")), (1, 3 * Q, Q, ())]
        )

    def test_partial_absorption_leaves_base_untouched(self) -> None:
        base, other = self._pair([("C4", Q), (None, 3 * Q)], [("D4", 2 * Q), (None, 2 * Q)])
        merge(self.document, base, other)
        self.assertEqual(
            shape(base.entries), [(1, 0, Q, ("C4", "D4")), (1, Q, 3 * Q, ())]
        )
        self.assertTrue(base.is_contiguous())

    def test_absorption_never_crosses_a_note(self) -> None:
        base, other = self._pair([("C4", Q), ("E4", 3 * Q)], [("D4", 2 * Q), (None, 2 * Q)])
        merge(self.document, base, other)
        self.assertEqual(shape(base.entries), [(1, 0, Q, ("C4", "D4")), (1, Q, 3 * Q, ("E4",))])

    def test_rest_only_merge_is_idempotent(self) -> None:
        base, other = self._pair([("C4", Q), (None, Q), ("E4", 2 * Q)], [(None, WHOLE)])
        before = base.copy()
        merge(self.document, base, other)
        self.assertEqual(base, before)

    def test_merging_a_timeline_into_itself_is_a_no_op(self) -> None:
        base, _ = self._pair([("C4", WHOLE)], [(None, WHOLE)])
        self.assertIs(merge_entries(self.document, base, base), base)
        self.assertEqual(shape(base.entries), [(1, 0, WHOLE, ("C4",))])

    def test_note_lands_in_unoccupied_base_measure(self) -> None:
        document = make_document(staves=2, measures=2)
        document.set_entries(1, 1, 1, entries(1, [("C4", WHOLE)]))
        document.set_entries(2, 1, 2, entries(2, [(None, Q), ("G4", 3 * Q)]))
        base = timeline(document, 1, end=2)
        merge(document, base, timeline(document, 2, end=2))
        self.assertEqual(
            shape(base.entries),
            [(1, 0, WHOLE, ("C4",)), (2, 0, Q, ()), (2, Q, 3 * Q, ("G4",))],
        )

    def test_uncovered_splice_position_is_rejected(self) -> None:
        base = timeline(self.document, 1)
        base.entries = [Entry.note(1, 0, Q, ["C4"])]
        self.document.set_entries(2, 1, 1, entries(1, [(None, 2 * Q), ("D4", 2 * Q)]))
        with self.assertRaises(InvalidSpliceAnchorError) as ctx:
            merge_entries(self.document, base, timeline(self.document, 2))
        self.assertEqual(ctx.exception.detail, "splice_position_not_covered")
        self.assertEqual(ctx.exception.position, 2 * Q)

    def test_missing_anchor_is_rejected(self) -> None:
        base = timeline(self.document, 1)
        base.entries = [Entry.rest(1, Q, 3 * Q)]
        self.document.set_entries(2, 1, 1, entries(1, [("D4", Q), (None, 3 * Q)]))
        with self.assertRaises(InvalidSpliceAnchorError) as ctx:
            merge_entries(self.document, base, timeline(self.document, 2))
        self.assertEqual(ctx.exception.to_payload()["error_type"], "InvalidSpliceAnchor")


class DetailTransferTests(unittest.TestCase):
    def test_articulations_and_noteheads_follow_pitches(self) -> None:
        document = make_document(staves=2)
        document.set_entries(1, 1, 1, entries(1, [("C4", WHOLE)]))
        other_entry = Entry.note(
            1,
            0,
            WHOLE,
            ["E4"],
            articulations=[Articulation("Staccato", above=True)],
            notehead_overrides={"E4": "x"},
        )
        document.set_entries(2, 1, 1, [other_entry])
        base = timeline(document, 1)
        merge(document, base, timeline(document, 2))
        merged = base.entries[0]
        self.assertEqual(merged.pitches, ["C4", "E4"])
        self.assertEqual(merged.articulations, [Articulation("Staccato", above=True)])
        self.assertEqual(merged.notehead_overrides, {"E4": "x"})

    def test_expressions_follow_the_spliced_note(self) -> None:
        document = make_document(staves=2)
        document.set_entries(1, 1, 1, entries(1, [(None, WHOLE)]))
        document.set_entries(2, 1, 1, entries(1, [(None, Q), ("E4", Q), (None, 2 * Q)]))
        document.add_expression(2, 1, Expression(Q, ScalarPayload("dolce")))
        base = timeline(document, 1)
        merge(document, base, timeline(document, 2))
        self.assertEqual(document.load_expressions(1, 1), [Expression(Q, ScalarPayload("dolce"))])


class ConsolidateTests(unittest.TestCase):
    def test_consolidate_writes_and_reloads(self) -> None:
        document = make_document(staves=3, measures=2)
        document.set_entries(1, 1, 1, entries(1, [("C4", WHOLE)]))
        document.set_entries(1, 1, 2, entries(2, [(None, WHOLE)]))
        document.set_entries(2, 1, 1, entries(1, [("E4", 2 * Q), (None, 2 * Q)]))
        document.set_entries(3, 1, 2, entries(2, [(None, 3 * Q), ("B4", Q)]))
        base = timeline(document, 1, end=2)
        result = consolidate(
            document, base, [timeline(document, 2, end=2), timeline(document, 3, end=2)]
        )
        self.assertEqual(result, timeline(document, 1, end=2))
        self.assertTrue(result.is_contiguous())
        self.assertEqual(
            shape(result.entries),
            [
                (1, 0, WHOLE, ("C4", "E4")),
                (2, 0, 3 * Q, ()),
                (2, 3 * Q, Q, ("B4",)),
            ],
        )

    def test_consolidate_rebars_once_from_range_start(self) -> None:
        document = make_document(staves=2, measures=3)
        for measure in (1, 2, 3):
            document.set_entries(1, 1, measure, entries(measure, [("C4", WHOLE)]))
            document.set_entries(2, 1, measure, entries(measure, [(None, 2 * Q), ("E4", 2 * Q)]))
        calls = []
        rebar = document.rebar_measure

        def _recording(staff_id, measure):
            calls.append((staff_id, measure))
            rebar(staff_id, measure)

        document.rebar_measure = _recording
        base = document.load_timeline(1, 1, MeasureRange(2, 3))
        result = consolidate(document, base, [document.load_timeline(2, 1, MeasureRange(2, 3))])

        self.assertEqual(calls, [(1, 2)])
        self.assertTrue(result.is_contiguous())
        self.assertEqual(
            shape(result.entries),
            [
                (2, 0, 2 * Q, ("C4",)),
                (2, 2 * Q, 2 * Q, ("E4",)),
                (3, 0, 2 * Q, ("C4",)),
                (3, 2 * Q, 2 * Q, ("E4",)),
            ],
        )

    def test_duration_is_conserved_per_measure(self) -> None:
        document = make_document(staves=3, measures=2)
        document.set_entries(1, 1, 1, entries(1, [("C4", Q), (None, 3 * Q)]))
        document.set_entries(1, 1, 2, entries(2, [("C4", 2 * Q), ("D4", 2 * Q)]))
        document.set_entries(2, 1, 1, entries(1, [(None, Q), ("E4", Q), ("F4", 2 * Q)]))
        document.set_entries(2, 1, 2, entries(2, [(None, Q), ("G4", 3 * Q)]))
        document.set_entries(3, 1, 1, entries(1, [("A4", 3 * Q), (None, Q)]))
        result = consolidate(
            document,
            timeline(document, 1, end=2),
            [timeline(document, 2, end=2), timeline(document, 3, end=2)],
        )
        for measure in (1, 2):
            total = sum(entry.actual_duration for entry in result.entries_in(measure))
            self.assertEqual(total, document.measure_length(measure))
        result.check_contiguity()


if __name__ == "__main__":
    unittest.main()
