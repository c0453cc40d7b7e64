from __future__ import annotations

import unittest

from staffcombine.engine.merge_task import MergeTask, SlotAssignment
from staffcombine.engine.regions import (
    RegionDetection,
    combine_line,
    detect_next_region,
    finish_line,
    iter_regions,
    staves_with_secondary_layers,
    texture,
)
from staffcombine.engine.timeline import MeasureRange
from tests.helpers import Q, WHOLE, entries, make_document, shape, timeline


def _line_document():
    """Staves 1 and 2 play in measures 1-2, nobody in 3, only staff 2 in 4."""
    document = make_document(staves=3, measures=4)
    for measure in (1, 2):
        document.set_entries(1, 1, measure, entries(measure, [("C4", WHOLE)]))
        document.set_entries(2, 1, measure, entries(measure, [(None, 2 * Q), ("E4", 2 * Q)]))
    document.set_entries(2, 1, 4, entries(4, [("G4", WHOLE)]))
    return document


class RegionDetectionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.document = _line_document()

    def test_texture_reports_primary_slot_content(self) -> None:
        self.assertEqual(texture(self.document, [1, 2, 3], 1), (True, True, False))
        self.assertEqual(texture(self.document, [1, 2, 3], 3), (False, False, False))

    def test_by_measure_returns_single_measures(self) -> None:
        regions = list(iter_regions(self.document, [1, 2], 1, RegionDetection.BY_MEASURE))
        self.assertEqual(regions, [MeasureRange(1, 1), MeasureRange(2, 2), MeasureRange(4, 4)])

    def test_phrase_extends_while_texture_holds(self) -> None:
        regions = list(iter_regions(self.document, [1, 2], 1, RegionDetection.AUTO_DETECT_PHRASE))
        self.assertEqual(regions, [MeasureRange(1, 2), MeasureRange(4, 4)])

    def test_no_region_after_last_music(self) -> None:
        self.assertIsNone(detect_next_region(self.document, [1], 3))
        self.assertIsNone(detect_next_region(self.document, [3], 1))

    def test_secondary_layers_are_found(self) -> None:
        self.document.set_entries(3, 2, 3, entries(3, [("A3", WHOLE)]))
        found = staves_with_secondary_layers(self.document, [1, 2, 3], MeasureRange(1, 4))
        self.assertEqual(found, [3])
        self.assertEqual(staves_with_secondary_layers(self.document, [1, 2], MeasureRange(1, 4)), [])


class LineTests(unittest.TestCase):
    def test_combine_line_then_finish(self) -> None:
        document = _line_document()
        template = MergeTask(
            destination_staff=1,
            measure_range=MeasureRange(1, 1),
            assignments=(SlotAssignment(1, 1, 1), SlotAssignment(2, 1, 1)),
        )

        reports = combine_line(document, template, [1, 2], RegionDetection.AUTO_DETECT_PHRASE)

        self.assertEqual(
            [(report.start_measure, report.end_measure) for report in reports], [(1, 2), (4, 4)]
        )
        self.assertTrue(all(report.ok for report in reports))
        combined = timeline(document, 1, end=4)
        self.assertEqual(
            shape(combined.entries),
            [
                (1, 0, 2 * Q, ("C4",)),
                (1, 2 * Q, 2 * Q, ("E4",)),
                (2, 0, 2 * Q, ("C4",)),
                (2, 2 * Q, 2 * Q, ("E4",)),
                (4, 0, WHOLE, ("G4",)),
            ],
        )

        still_sounding = finish_line(document, [1, 2], destination_staff=1)
        self.assertEqual(still_sounding, [2])
        self.assertEqual(document.staff_ids(), [1, 3])

    def test_finish_line_requires_destination_in_line(self) -> None:
        document = _line_document()
        with self.assertRaises(ValueError):
            finish_line(document, [2, 3], destination_staff=1)

    def test_finish_line_reports_only_staves_with_music(self) -> None:
        document = _line_document()
        self.assertEqual(finish_line(document, [1, 2, 3], destination_staff=2), [1])
        self.assertEqual(document.staff_ids(), [2])
