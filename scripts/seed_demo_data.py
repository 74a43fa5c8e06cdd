#!/usr/bin/env python3
"""
Seed the ledger with a small, realistic demo school.

Creates two terms, a class of students, the fee catalog, one invoice per
student for the active term and a spread of payments so that the debtor
listing and collection summary have something to show.

Usage:
    python scripts/seed_demo_data.py --dry-run   # show the plan, write nothing
    python scripts/seed_demo_data.py --confirm   # write to the database

Requires migrations to be applied (alembic upgrade head).
"""

import asyncio
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.core.database.session import async_session
from src.modules.fees.models import FeeItem
from src.modules.fees.schemas import FeeItemCreate, InstallmentSchema
from src.modules.fees.service import FeeCatalogService
from src.modules.invoices.schemas import InvoiceGenerationRequest
from src.modules.invoices.service import InvoiceService
from src.modules.payments.models import PaymentMethod
from src.modules.payments.schemas import PaymentCreate
from src.modules.payments.service import LedgerService
from src.modules.students.models import Student
from src.modules.terms.models import Term, TermStatus

SEED_USER_ID = 1
CURRENT_YEAR = 2026

# (year, term_number, status, start, end)
TERMS = [
    (CURRENT_YEAR - 1, 3, TermStatus.CLOSED, date(CURRENT_YEAR - 1, 9, 8), date(CURRENT_YEAR - 1, 12, 12)),
    (CURRENT_YEAR, 1, TermStatus.ACTIVE, date(CURRENT_YEAR, 1, 12), date(CURRENT_YEAR, 4, 3)),
]

# (admission number, full name, class)
STUDENTS = [
    ("ADM-0001", "Chiamaka Okafor", "JSS1"),
    ("ADM-0002", "Ibrahim Musa", "JSS1"),
    ("ADM-0003", "Funmilayo Adeyemi", "JSS1"),
    ("ADM-0004", "Emeka Nwosu", "JSS2"),
    ("ADM-0005", "Zainab Bello", "JSS2"),
    ("ADM-0006", "Tobi Ogunleye", "JSS2"),
    ("ADM-0007", "Ngozi Eze", "SS1"),
    ("ADM-0008", "Yusuf Abdullahi", "SS1"),
]

FEE_ITEMS = [
    FeeItemCreate(
        name="Tuition",
        description="Termly tuition",
        amount=Decimal("150000.00"),
        allow_installments=True,
        priority=1,
        installments=[
            InstallmentSchema(name="First half", amount=Decimal("75000.00"), due_date=date(CURRENT_YEAR, 1, 31)),
            InstallmentSchema(name="Second half", amount=Decimal("75000.00"), due_date=date(CURRENT_YEAR, 2, 28)),
        ],
    ),
    FeeItemCreate(name="Development Levy", amount=Decimal("20000.00"), priority=2),
    FeeItemCreate(name="Books", amount=Decimal("35000.00"), priority=3),
    FeeItemCreate(name="Excursion", amount=Decimal("15000.00"), is_compulsory=False, priority=4),
]

# Share of each invoice paid, by student position. None = nothing paid.
PAYMENT_PLAN = [
    (Decimal("1"), PaymentMethod.BANK_TRANSFER),
    (Decimal("1"), PaymentMethod.POS),
    (Decimal("0.5"), PaymentMethod.CASH),
    (Decimal("0.25"), PaymentMethod.ONLINE),
    (None, None),
    (Decimal("1"), PaymentMethod.BANK_TRANSFER),
    (Decimal("0.75"), PaymentMethod.CASH),
    (None, None),
]


async def already_seeded(session: AsyncSession) -> bool:
    result = await session.execute(select(func.count()).select_from(FeeItem))
    return (result.scalar() or 0) > 0


async def seed_terms(session: AsyncSession) -> Term:
    active = None
    for year, number, status, start, end in TERMS:
        term = Term(
            year=year,
            term_number=number,
            display_name=f"{year}-T{number}",
            status=status.value,
            start_date=start,
            end_date=end,
        )
        session.add(term)
        if status == TermStatus.ACTIVE:
            active = term
    await session.flush()
    print(f"  Created {len(TERMS)} terms (active: {active.display_name}).")
    return active


async def seed_students(session: AsyncSession) -> list[Student]:
    students = [
        Student(admission_number=adm, full_name=name, class_name=class_name)
        for adm, name, class_name in STUDENTS
    ]
    session.add_all(students)
    await session.flush()
    print(f"  Created {len(students)} students.")
    return students


async def seed_fee_items(session: AsyncSession) -> list[FeeItem]:
    catalog = FeeCatalogService(session)
    items = []
    for data in FEE_ITEMS:
        item, _ = await catalog.save_fee_item(data, SEED_USER_ID, commit=False)
        items.append(item)
    print(f"  Created {len(items)} fee items.")
    return items


async def seed_payments(session: AsyncSession, invoice_ids: list[int], total: Decimal) -> None:
    ledger = LedgerService(session)
    recorded = 0
    for invoice_id, (share, method) in zip(invoice_ids, PAYMENT_PLAN):
        if share is None:
            continue
        await ledger.record_payment(
            PaymentCreate(
                invoice_id=invoice_id,
                amount=(total * share).quantize(Decimal("0.01")),
                payment_method=method,
                reference="DEMO",
            ),
            SEED_USER_ID,
        )
        recorded += 1
    print(f"  Recorded {recorded} payments.")


async def run_seed(session: AsyncSession) -> None:
    term = await seed_terms(session)
    students = await seed_students(session)
    fee_items = await seed_fee_items(session)
    await session.commit()

    compulsory = [f for f in fee_items if f.is_compulsory]
    result = await InvoiceService(session).generate_invoices(
        InvoiceGenerationRequest(
            student_ids=[s.id for s in students],
            term_id=term.id,
            fee_item_ids=[f.id for f in compulsory],
            due_date=date(CURRENT_YEAR, 2, 28),
        ),
        SEED_USER_ID,
    )
    print(f"  Generated {result.invoices_created} invoices.")

    total = sum((f.amount for f in compulsory), Decimal("0"))
    await seed_payments(session, result.invoice_ids, total)


def print_plan() -> None:
    print(f"  Would create {len(TERMS)} terms, {len(STUDENTS)} students, {len(FEE_ITEMS)} fee items.")
    paid = sum(1 for share, _ in PAYMENT_PLAN if share is not None)
    print(f"  Would generate {len(STUDENTS)} invoices and record {paid} payments.")


async def main() -> None:
    import argparse
    parser = argparse.ArgumentParser(description="Seed database with fee ledger demo data")
    parser.add_argument("--dry-run", action="store_true", help="Show the plan only")
    parser.add_argument("--confirm", action="store_true", help="Write to the database")
    args = parser.parse_args()
    if not args.dry_run and not args.confirm:
        print("Use --dry-run or --confirm")
        sys.exit(1)

    print("Database:", settings.database_url.split("@")[-1] if "@" in settings.database_url else "?")
    print("Mode:", "DRY-RUN" if args.dry_run else "CONFIRM")
    async with async_session() as session:
        if await already_seeded(session):
            print("Fee catalog is not empty, refusing to seed.")
            sys.exit(1)
        if args.dry_run:
            print_plan()
            print("\n[DRY-RUN] No data written.")
            return
        await run_seed(session)
    print("Done.")


if __name__ == "__main__":
    asyncio.run(main())
