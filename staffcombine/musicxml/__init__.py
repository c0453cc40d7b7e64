"""MusicXML adapter: load scores into a MemoryDocument and write them back."""

from staffcombine.musicxml.parser import document_from_score, load_musicxml
from staffcombine.musicxml.writer import score_from_document, signature_for_length, write_musicxml

__all__ = [
    "document_from_score",
    "load_musicxml",
    "score_from_document",
    "signature_for_length",
    "write_musicxml",
]
