"""Read-only lookups against the term calendar."""

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import NotFoundError
from src.modules.terms.models import Term, TermStatus


class TermCalendar:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_term(self, term_id: int) -> Term:
        result = await self.db.execute(select(Term).where(Term.id == term_id))
        term = result.scalar_one_or_none()
        if not term:
            raise NotFoundError("Term", term_id)
        return term

    async def count_terms(self) -> int:
        result = await self.db.execute(select(func.count()).select_from(Term))
        return result.scalar() or 0

    async def get_default_term(self) -> Term | None:
        """The active term, otherwise the most recent one by year and number."""
        result = await self.db.execute(
            select(Term)
            .order_by(
                case((Term.status == TermStatus.ACTIVE.value, 0), else_=1),
                Term.year.desc(),
                Term.term_number.desc(),
                Term.id.desc(),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()
