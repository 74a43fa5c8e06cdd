from src.core.documents.models import DocumentSequence
from src.core.documents.number_generator import (
    DocumentKind,
    DocumentNumberGenerator,
    format_document_number,
)

__all__ = ["DocumentKind", "DocumentNumberGenerator", "DocumentSequence", "format_document_number"]
