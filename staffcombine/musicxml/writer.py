from __future__ import annotations

from fractions import Fraction
from pathlib import Path
from typing import List, Optional

from music21 import (
    articulations,
    chord,
    common,
    duration,
    dynamics,
    expressions,
    metadata,
    meter,
    note,
    stream,
    tie,
)

from staffcombine.document import MemoryDocument
from staffcombine.engine.timeline import (
    TICKS_PER_QUARTER,
    VOICE_SLOTS,
    Entry,
    Expression,
    StructuredPayload,
)
from staffcombine.logging_utils import get_logger

logger = get_logger(__name__)


def write_musicxml(document: MemoryDocument, path: str | Path) -> Path:
    """Write the document as MusicXML and return the written path."""
    out_path = Path(path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    score = score_from_document(document)
    written = score.write("musicxml", fp=str(out_path))
    logger.info("Wrote %s staves to %s", len(document.staff_ids()), written)
    return Path(written)


def score_from_document(document: MemoryDocument) -> stream.Score:
    score = stream.Score()
    if document.title:
        score.insert(0, metadata.Metadata(title=document.title))
    for staff_id in document.staff_ids():
        info = document.staff_info(staff_id)
        part = stream.Part(id=info.part_id or f"P{staff_id}")
        if info.name:
            part.partName = info.name
        current: Optional[meter.TimeSignature] = None
        for number in document.measure_numbers():
            measure = _build_measure(document, staff_id, number)
            if measure.timeSignature is not None:
                current = measure.timeSignature
            _pad_short_measure(document, measure, number, current)
            part.append(measure)
        score.insert(0, part)
    return score


def _opening_signature(document: MemoryDocument) -> str:
    # A short first measure is a pickup into the meter of the next one.
    lengths = [document.measure_length(number) for number in document.measure_numbers()[:2]]
    return signature_for_length(max(lengths))


def _pad_short_measure(
    document: MemoryDocument,
    measure: stream.Measure,
    number: int,
    signature: Optional[meter.TimeSignature],
) -> None:
    if signature is None:
        return
    bar = Fraction(signature.barDuration.quarterLength)
    missing = bar - _quarters(document.measure_length(number))
    if missing <= 0:
        return
    if number == document.measure_numbers()[0]:
        measure.paddingLeft = common.opFrac(missing)
    else:
        measure.paddingRight = common.opFrac(missing)


def _build_measure(document: MemoryDocument, staff_id: int, number: int) -> stream.Measure:
    length = document.measure_length(number)
    measure = stream.Measure(number=number)
    signature = document.time_signatures.get(number)
    if signature is None and number == document.measure_numbers()[0]:
        signature = _opening_signature(document)
    if signature is not None:
        measure.timeSignature = meter.TimeSignature(signature)

    cells = [(slot, document.entries_at(staff_id, slot, number)) for slot in VOICE_SLOTS]
    occupied = [(slot, entries) for slot, entries in cells if entries]
    if not occupied:
        measure.insert(0, note.Rest(quarterLength=_quarters(length)))
    elif len(occupied) == 1 and occupied[0][0] == 1:
        _insert_entries(measure, occupied[0][1])
    else:
        for slot, entries in occupied:
            voice = stream.Voice(id=str(slot))
            _insert_entries(voice, entries)
            measure.insert(0, voice)

    for expression in document.load_expressions(staff_id, number):
        measure.insert(_quarters(expression.position), _expression_element(expression))
    return measure


def _insert_entries(container: stream.Stream, entries: List[Entry]) -> None:
    tied_in = False
    for entry in entries:
        element = _element_for(entry)
        if entry.is_note and (tied_in or entry.tie_forward):
            if tied_in and entry.tie_forward:
                element.tie = tie.Tie("continue")
            elif tied_in:
                element.tie = tie.Tie("stop")
            else:
                element.tie = tie.Tie("start")
        tied_in = entry.is_note and entry.tie_forward
        container.insert(_quarters(entry.position), element)


def _element_for(entry: Entry) -> note.GeneralNote:
    if entry.is_rest:
        element: note.GeneralNote = note.Rest()
    elif len(entry.pitches) == 1:
        element = note.Note(entry.pitches[0])
        override = entry.notehead_overrides.get(entry.pitches[0])
        if override:
            element.notehead = override
    else:
        element = chord.Chord(entry.pitches)
        for chord_note in element.notes:
            override = entry.notehead_overrides.get(chord_note.pitch.nameWithOctave)
            if override:
                chord_note.notehead = override
    element.duration = duration.Duration(_quarters(entry.actual_duration))

    for mark in entry.articulations:
        mark_cls = getattr(articulations, mark.definition_id, None)
        if not (isinstance(mark_cls, type) and issubclass(mark_cls, articulations.Articulation)):
            logger.warning("Unknown articulation %s on %s", mark.definition_id, entry.describe())
            continue
        articulation = mark_cls()
        if mark.above is not None:
            articulation.placement = "above" if mark.above else "below"
        element.articulations.append(articulation)
    return element


def _expression_element(expression: Expression):
    payload = expression.payload
    if isinstance(payload, StructuredPayload):
        fields = payload.as_dict()
        if fields.get("kind") == "dynamic" and fields.get("value"):
            return dynamics.Dynamic(str(fields["value"]))
    return expressions.TextExpression(expression.text())


def signature_for_length(ticks: int) -> str:
    """Smallest x/4, x/8 or x/16 signature that spans the given measure length."""
    quarters = Fraction(ticks, TICKS_PER_QUARTER)
    for denominator in (4, 8, 16):
        beats = quarters * denominator / 4
        if beats.denominator == 1:
            return f"{beats.numerator}/{denominator}"
    raise ValueError(f"No simple time signature spans {ticks} ticks.")


def _quarters(ticks: int) -> Fraction:
    return Fraction(ticks, TICKS_PER_QUARTER)

