from .controller import Gate, SelectionController, SelectionState, StatusMessage
from .documents import DocumentLibrary, DocumentLoadError, load_documents
from .labels import DocumentLabels, is_completed
from .migrate import migrate
from .offsets import OffsetRange, TextSelection, container_text, offsets_to_span, selection_to_offsets
from .overlay import OverlayRenderer
from .render import render_document
from .session import AnnotationSession, SaveFileError
from .store import SCHEMA_VERSION, AnnotationRecord, AnnotationStore
from .taxonomy import Taxonomy, TaxonomyError, default_taxonomy, load_taxonomy

__all__ = [
    "AnnotationRecord",
    "AnnotationStore",
    "SCHEMA_VERSION",
    "OffsetRange",
    "TextSelection",
    "container_text",
    "selection_to_offsets",
    "offsets_to_span",
    "migrate",
    "OverlayRenderer",
    "SelectionController",
    "SelectionState",
    "Gate",
    "StatusMessage",
    "DocumentLabels",
    "is_completed",
    "Taxonomy",
    "TaxonomyError",
    "default_taxonomy",
    "load_taxonomy",
    "render_document",
    "DocumentLibrary",
    "DocumentLoadError",
    "load_documents",
    "AnnotationSession",
    "SaveFileError",
]
