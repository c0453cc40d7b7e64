from __future__ import annotations

from fractions import Fraction
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from music21 import chord, converter, dynamics, expressions, note, stream

from staffcombine.document import MemoryDocument
from staffcombine.engine.timeline import (
    VOICE_SLOTS,
    Articulation,
    Entry,
    Expression,
    Tuplet,
    expression_payload,
    quarter_ticks,
)
from staffcombine.logging_utils import get_logger

logger = get_logger(__name__)


def load_musicxml(path: str | Path) -> MemoryDocument:
    """Parse MusicXML (.xml, .musicxml or .mxl) into a MemoryDocument.

    Parts become staves 1..N in score order and music21 voices become voice
    slots 1-4. Measures are renumbered 1..N from the first part's layout.
    """
    score = converter.parse(str(path))
    return document_from_score(score)


def document_from_score(score: stream.Score) -> MemoryDocument:
    parts = list(score.parts)
    if not parts:
        raise ValueError("Score has no parts.")
    layout = list(parts[0].getElementsByClass(stream.Measure))
    if not layout:
        raise ValueError("Score has no measures.")
    lengths, signatures = _measure_layout(layout)
    title = score.metadata.title if score.metadata else None
    document = MemoryDocument(lengths, title=title, time_signatures=signatures)
    for part in parts:
        part_id = str(part.id) if part.id is not None else None
        staff_id = document.add_staff(part.partName, part_id=part_id)
        measures = list(part.getElementsByClass(stream.Measure))
        if len(measures) != len(layout):
            raise ValueError(
                f"Part {part_id} has {len(measures)} measures, expected {len(layout)}."
            )
        for number, measure in enumerate(measures, start=1):
            for voice_slot, elements in _voice_streams(measure, staff_id=staff_id):
                entries = _collect_entries(elements, number, lengths[number])
                document.set_entries(staff_id, voice_slot, number, entries)
            for expression in _collect_expressions(measure):
                document.add_expression(staff_id, number, expression)
    logger.info(
        "Loaded score title=%s staves=%s measures=%s",
        title,
        len(document.staff_ids()),
        len(lengths),
    )
    return document


def _measure_layout(measures: Sequence[stream.Measure]) -> Tuple[Dict[int, int], Dict[int, str]]:
    lengths: Dict[int, int] = {}
    signatures: Dict[int, str] = {}
    for number, measure in enumerate(measures, start=1):
        lengths[number] = measure_ticks(measure)
        if measure.timeSignature is not None:
            signatures[number] = measure.timeSignature.ratioString
    return lengths, signatures


def measure_ticks(measure: stream.Measure) -> int:
    """Sounding length of a measure: the bar less any pickup or short-bar padding.

    Contents of a padded measure start at offset 0, so no shift is needed.
    """
    quarters = (
        Fraction(measure.barDuration.quarterLength)
        - Fraction(measure.paddingLeft)
        - Fraction(measure.paddingRight)
    )
    if quarters <= 0:
        raise ValueError(f"Measure {measure.number} has no playable length.")
    return quarter_ticks(quarters)


def _voice_streams(
    measure: stream.Measure, *, staff_id: int
) -> List[Tuple[int, List[note.GeneralNote]]]:
    voices = list(measure.voices)
    if not voices:
        return [(1, list(measure.notesAndRests))]
    streams: List[Tuple[int, List[note.GeneralNote]]] = []
    used: set[int] = set()
    for idx, voice in enumerate(voices):
        slot = _voice_slot(voice, idx)
        if slot in used or slot not in VOICE_SLOTS:
            logger.warning(
                "Dropping voice %s of staff %s measure %s: only slots 1-4 are kept",
                voice.id,
                staff_id,
                measure.number,
            )
            continue
        used.add(slot)
        streams.append((slot, list(voice.notesAndRests)))
    return streams


def _voice_slot(voice: stream.Voice, index: int) -> int:
    try:
        slot = int(str(voice.id))
    except ValueError:
        return index + 1
    return slot if slot in VOICE_SLOTS else index + 1


def _collect_entries(
    elements: Sequence[note.GeneralNote], measure_number: int, measure_length: int
) -> List[Entry]:
    entries: List[Entry] = []
    cursor = 0
    for element in sorted(elements, key=lambda el: (float(el.offset), getattr(el, "priority", 0))):
        if element.duration.isGrace:
            continue
        position = quarter_ticks(element.offset)
        duration = quarter_ticks(element.duration.quarterLength)
        if duration <= 0:
            continue
        if position < cursor:
            logger.warning(
                "Skipping overlapping %s at measure %s offset %s",
                element.classes[0],
                measure_number,
                element.offset,
            )
            continue
        if position > cursor:
            entries.append(Entry.rest(measure_number, cursor, position - cursor))
        entries.append(_make_entry(element, measure_number, position, duration))
        cursor = position + duration
    # A layer holding only rests is written for layout; treat it as unoccupied.
    if not any(entry.is_note for entry in entries):
        return []
    if cursor < measure_length:
        entries.append(Entry.rest(measure_number, cursor, measure_length - cursor))
    elif cursor > measure_length:
        last = entries[-1]
        last.actual_duration -= cursor - measure_length
        last.nominal_duration = last.actual_duration
        logger.warning("Trimmed overfull measure %s to %s ticks", measure_number, measure_length)
    return entries


def _make_entry(element: note.GeneralNote, measure: int, position: int, duration: int) -> Entry:
    pitches: List[str] = []
    noteheads: Dict[str, str] = {}
    if isinstance(element, chord.Chord):
        for chord_note in element.notes:
            name = chord_note.pitch.nameWithOctave
            pitches.append(name)
            if chord_note.notehead != "normal":
                noteheads[name] = chord_note.notehead
    elif isinstance(element, note.Note):
        name = element.pitch.nameWithOctave
        pitches.append(name)
        if element.notehead != "normal":
            noteheads[name] = element.notehead

    nominal = Fraction(duration)
    tuplets: List[Tuplet] = []
    for tup in element.duration.tuplets:
        nominal = nominal * tup.numberNotesActual / tup.numberNotesNormal
    for tup in element.duration.tuplets:
        if tup.type != "start":
            continue
        if tup.durationNormal is not None:
            reference = quarter_ticks(tup.durationNormal.quarterLength)
        else:
            reference = round(nominal)
        tuplets.append(
            Tuplet(
                number=tup.numberNotesActual,
                reference_number=tup.numberNotesNormal,
                reference_duration=reference,
            )
        )

    articulation_marks = [
        Articulation(
            definition_id=type(mark).__name__,
            above=None if not mark.placement else mark.placement == "above",
        )
        for mark in getattr(element, "articulations", [])
    ]
    tie_forward = (
        bool(pitches)
        and element.tie is not None
        and element.tie.type in {"start", "continue"}
    )
    return Entry(
        measure=measure,
        position=position,
        actual_duration=duration,
        nominal_duration=round(nominal),
        pitches=pitches,
        tuplets=tuplets,
        articulations=articulation_marks,
        notehead_overrides=noteheads,
        tie_forward=tie_forward,
    )


def _collect_expressions(measure: stream.Measure) -> List[Expression]:
    found: List[Expression] = []
    for element in measure.recurse().getElementsByClass(
        [expressions.TextExpression, dynamics.Dynamic]
    ):
        position = quarter_ticks(element.getOffsetInHierarchy(measure))
        if isinstance(element, dynamics.Dynamic):
            raw: Optional[object] = {"kind": "dynamic", "value": element.value}
        else:
            raw = element.content
        if raw in (None, ""):
            continue
        found.append(Expression(position=position, payload=expression_payload(raw)))
    return found
