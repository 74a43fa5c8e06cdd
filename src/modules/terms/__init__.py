from src.modules.terms.models import Term, TermStatus
from src.modules.terms.service import TermCalendar

__all__ = [
    "Term",
    "TermStatus",
    "TermCalendar",
]
