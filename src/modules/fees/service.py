"""Service for Fee Catalog module."""

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit.service import AuditAction, AuditService
from src.core.exceptions import ConflictError, NotFoundError, ValidationError
from src.shared.utils.money import ZERO, has_cent_precision
from src.modules.fees.models import FeeItem
from src.modules.fees.schemas import FeeItemCreate
from src.modules.invoices.models import InvoiceLineItem

logger = logging.getLogger(__name__)


@dataclass
class FeeItemValues:
    """Validated, normalised fee item fields ready to persist."""

    name: str
    description: str | None
    amount: Decimal
    is_compulsory: bool
    allow_installments: bool
    priority: int
    installments: list[dict]

    def as_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "amount": self.amount,
            "is_compulsory": self.is_compulsory,
            "allow_installments": self.allow_installments,
            "priority": self.priority,
            "installments": self.installments,
        }


def validate_fee_item(data: FeeItemCreate) -> FeeItemValues:
    """
    Check a fee item definition and return the values to store.

    The installment schedule must sum to the fee amount exactly; the
    discrepancy is reported in the error details. Items without installments
    are always stored with an empty schedule.
    """
    name = (data.name or "").strip()
    if not name:
        raise ValidationError("Fee item name is required", field="name")

    if data.amount is None:
        raise ValidationError("Fee item amount is required", field="amount")
    if data.amount <= ZERO:
        raise ValidationError("Fee item amount must be greater than zero", field="amount")
    if not has_cent_precision(data.amount):
        raise ValidationError("Fee item amount cannot have more than 2 decimal places", field="amount")

    if data.priority < 1:
        raise ValidationError("Priority must be a positive integer", field="priority")

    installments: list[dict] = []
    if data.allow_installments:
        if not data.installments:
            raise ValidationError(
                "At least one installment is required when installments are allowed",
                field="installments",
            )
        total = ZERO
        for index, inst in enumerate(data.installments):
            inst_name = inst.name.strip()
            if not inst_name:
                raise ValidationError(
                    "Installment name cannot be blank", field=f"installments.{index}.name"
                )
            if inst.amount <= ZERO or not has_cent_precision(inst.amount):
                raise ValidationError(
                    f"Installment '{inst.name}' must have a positive amount with at most 2 decimal places",
                    field=f"installments.{index}.amount",
                )
            total += inst.amount
            installments.append(
                {
                    "name": inst_name,
                    "amount": str(inst.amount.quantize(Decimal("0.01"))),
                    "due_date": inst.due_date.isoformat() if inst.due_date else None,
                }
            )
        if total != data.amount:
            difference = abs(total - data.amount)
            raise ValidationError(
                f"Installment amounts total {total:.2f} but fee amount is "
                f"{data.amount:.2f} (difference {difference:.2f})",
                field="installments",
                expected=data.amount,
                actual=total,
                difference=difference,
            )

    return FeeItemValues(
        name=name,
        description=data.description,
        amount=data.amount.quantize(Decimal("0.01")),
        is_compulsory=data.is_compulsory,
        allow_installments=data.allow_installments,
        priority=data.priority,
        installments=installments,
    )


class FeeCatalogService:
    """Service for managing the fee catalog."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    async def get_fee_item(self, fee_item_id: int) -> FeeItem:
        result = await self.db.execute(select(FeeItem).where(FeeItem.id == fee_item_id))
        item = result.scalar_one_or_none()
        if not item:
            raise NotFoundError("Fee item", fee_item_id)
        return item

    async def get_fee_items(self, fee_item_ids: list[int]) -> list[FeeItem]:
        """Resolve fee items in the order requested; any unknown id is an error."""
        result = await self.db.execute(select(FeeItem).where(FeeItem.id.in_(fee_item_ids)))
        by_id = {item.id: item for item in result.scalars().all()}
        missing = [i for i in fee_item_ids if i not in by_id]
        if missing:
            raise NotFoundError("Fee item", missing[0])
        return [by_id[i] for i in fee_item_ids]

    async def find_by_name(self, name: str) -> FeeItem | None:
        """Case-insensitive lookup by name."""
        result = await self.db.execute(
            select(FeeItem).where(func.lower(FeeItem.name) == name.strip().lower())
        )
        return result.scalar_one_or_none()

    async def list_fee_items(self, compulsory_only: bool = False) -> list[FeeItem]:
        """List fee items, lowest priority number first."""
        query = select(FeeItem).order_by(FeeItem.priority, FeeItem.name, FeeItem.id)
        if compulsory_only:
            query = query.where(FeeItem.is_compulsory == True)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def save_fee_item(
        self,
        data: FeeItemCreate,
        saved_by_id: int,
        fee_item_id: int | None = None,
        commit: bool = True,
    ) -> tuple[FeeItem, bool]:
        """
        Create or update a fee item. Returns (item, created).

        With ``fee_item_id`` the item is updated (NotFoundError if unknown,
        ConflictError if the new name belongs to another item). Without it an
        existing item with the same name (ignoring case) is updated in place
        instead of creating a duplicate.
        """
        values = validate_fee_item(data)

        if fee_item_id is not None:
            item = await self.get_fee_item(fee_item_id)
            clash = await self.find_by_name(values.name)
            if clash and clash.id != item.id:
                raise ConflictError("Fee item", "name", values.name)
        else:
            item = await self.find_by_name(values.name)

        created = item is None
        if created:
            item = FeeItem(**values.as_dict())
            self.db.add(item)
            await self.db.flush()
            await self.audit.log(
                action=AuditAction.FEE_ITEM_CREATE,
                record_type="FeeItem",
                record_id=item.id,
                record_label=item.name,
                actor_id=saved_by_id,
                after={"name": item.name, "amount": str(item.amount)},
            )
        else:
            old_values = {
                "name": item.name,
                "amount": str(item.amount),
                "allow_installments": item.allow_installments,
                "priority": item.priority,
            }
            for key, value in values.as_dict().items():
                setattr(item, key, value)
            await self.db.flush()
            await self.audit.log(
                action=AuditAction.FEE_ITEM_UPDATE,
                record_type="FeeItem",
                record_id=item.id,
                record_label=item.name,
                actor_id=saved_by_id,
                before=old_values,
                after={
                    "name": item.name,
                    "amount": str(item.amount),
                    "allow_installments": item.allow_installments,
                    "priority": item.priority,
                },
            )

        if commit:
            await self.db.commit()
            await self.db.refresh(item)
        logger.info(
            "Fee item %s %s (id=%s, amount=%s)",
            item.name,
            "created" if created else "updated",
            item.id,
            item.amount,
        )
        return item, created

    async def delete_fee_item(self, fee_item_id: int, deleted_by_id: int) -> None:
        """
        Remove a catalog entry.

        Existing invoice line items keep their frozen description and amount;
        only their fee_item_id reference is cleared.
        """
        item = await self.get_fee_item(fee_item_id)

        await self.audit.log(
            action=AuditAction.FEE_ITEM_DELETE,
            record_type="FeeItem",
            record_id=item.id,
            record_label=item.name,
            actor_id=deleted_by_id,
            before={"name": item.name, "amount": str(item.amount)},
        )

        await self.db.execute(
            update(InvoiceLineItem)
            .where(InvoiceLineItem.fee_item_id == item.id)
            .values(fee_item_id=None)
        )
        await self.db.delete(item)
        await self.db.commit()
        logger.info("Fee item %s deleted (id=%s)", item.name, fee_item_id)
