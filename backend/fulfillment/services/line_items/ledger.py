"""
Line item ledger.

Append-only record of service charges on orders and inbound requests.
Catalog items are priced from the service catalog, never from client
input; custom items carry an operator-entered total that is added after
the margin. Items are voided with a reason instead of being deleted.

Order-owned items may change only while the order is being priced
(SUBMITTED, PRICING_REVIEW or PENDING_APPROVAL). Mutations lock the
order row so they serialize with quote approval, which reads the items
in the same transaction as it persists the quote.

Inbound requests live outside this service: their rows and owning
company are not visible here. Their items can therefore only be
touched by platform-wide staff, and the caller is trusted to pass the id
of an existing request.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.exceptions import Forbidden, NotFound, ValidationFailed, require_reason
from fulfillment.core.logging import get_logger
from fulfillment.core.security import Actor, Role, ensure_company_access, ensure_role
from fulfillment.database.models.line_item import (
    BillingMode,
    LineItem,
    LineItemType,
    PurposeType,
    ServiceCategory,
)
from fulfillment.database.models.order import Order
from fulfillment.services.line_items.repository import LineItemRepository
from fulfillment.services.orders.enums import LINE_ITEM_EDITABLE_STATUSES, STAFF_ROLES
from fulfillment.services.orders.repository import OrderRepository

logger = get_logger(__name__)


@dataclass(frozen=True)
class LineItemTarget:
    """The order or inbound request a line item belongs to."""

    purpose_type: PurposeType
    owner_id: uuid.UUID

    @classmethod
    def order(cls, order_id: uuid.UUID) -> "LineItemTarget":
        return cls(PurposeType.ORDER, order_id)

    @classmethod
    def inbound_request(cls, request_id: uuid.UUID) -> "LineItemTarget":
        return cls(PurposeType.INBOUND_REQUEST, request_id)

    def owner_fields(self) -> dict[str, Any]:
        if self.purpose_type == PurposeType.ORDER:
            return {"order_id": self.owner_id, "purpose_type": self.purpose_type}
        return {"inbound_request_id": self.owner_id, "purpose_type": self.purpose_type}


class LineItemLedger:
    """Adds, voids and lists line items."""

    def __init__(
        self,
        session: AsyncSession,
        repository: Optional[LineItemRepository] = None,
        order_repository: Optional[OrderRepository] = None,
    ):
        self.session = session
        self.repository = repository or LineItemRepository(session)
        self.order_repository = order_repository or OrderRepository(session)

    async def _lock_editable_order(self, order_id: uuid.UUID, actor: Actor) -> Order:
        order = await self.order_repository.get(order_id, for_update=True)
        if order is None:
            raise NotFound("Order", order_id)
        ensure_company_access(actor, order.company_id)
        if order.status not in LINE_ITEM_EDITABLE_STATUSES:
            raise ValidationFailed(
                f"Line items cannot be changed while the order is "
                f"{order.status.display_name}",
                field="order_id",
                status=order.status.value,
            )
        return order

    @staticmethod
    def _ensure_inbound_scope(actor: Actor) -> None:
        ensure_role(actor, STAFF_ROLES, action="manage inbound request line items")
        if actor.companies is not None:
            raise Forbidden(
                "Inbound request line items require platform-wide access",
                actor_id=actor.id,
            )

    async def _prepare_target(self, target: LineItemTarget, actor: Actor) -> None:
        if target.purpose_type == PurposeType.ORDER:
            await self._lock_editable_order(target.owner_id, actor)
        else:
            self._ensure_inbound_scope(actor)

    async def add_catalog_item(
        self,
        target: LineItemTarget,
        service_type_id: uuid.UUID,
        quantity: Decimal,
        actor: Actor,
        billing_mode: BillingMode = BillingMode.BILLABLE,
        metadata: Optional[dict[str, Any]] = None,
        notes: Optional[str] = None,
    ) -> LineItem:
        """
        Add a catalog service charge.

        The total is ``quantity * default_rate`` of the service type.

        Raises:
            Forbidden: If the actor is not staff
            NotFound: If the service type or order does not exist
            ValidationFailed: If the quantity is not positive, the service
                type is inactive or unpriced, or metadata is given for a
                non-transport service
        """
        ensure_role(actor, STAFF_ROLES, action="add line items")
        quantity = Decimal(quantity)
        if quantity <= 0:
            raise ValidationFailed("Quantity must be greater than zero", field="quantity")

        service_type = await self.repository.get_service_type(service_type_id)
        if service_type is None:
            raise NotFound("Service type", service_type_id)
        if not service_type.is_active:
            raise ValidationFailed(
                f"Service type '{service_type.name}' is inactive",
                field="service_type_id",
            )
        if service_type.default_rate is None:
            raise ValidationFailed(
                f"Service type '{service_type.name}' has no catalog rate; "
                "add it as a custom item instead",
                field="service_type_id",
            )
        if metadata and service_type.category != ServiceCategory.TRANSPORT:
            raise ValidationFailed(
                "Trip metadata is only accepted on transport services",
                field="metadata",
            )

        await self._prepare_target(target, actor)

        unit_rate = Decimal(service_type.default_rate)
        item = await self.repository.add(
            LineItem(
                **target.owner_fields(),
                service_type_id=service_type.id,
                line_item_type=LineItemType.CATALOG,
                category=service_type.category,
                description=service_type.name,
                quantity=quantity,
                unit=service_type.unit,
                unit_rate=unit_rate,
                total=quantity * unit_rate,
                billing_mode=billing_mode,
                item_metadata=metadata,
                notes=notes,
                added_by=actor.id,
                is_voided=False,
            )
        )
        await self.session.commit()

        logger.info(
            "Catalog line item added",
            line_item_id=str(item.id),
            owner_id=str(target.owner_id),
            service_type=service_type.name,
            total=str(item.total),
            billing_mode=billing_mode.value,
        )
        return item

    async def add_custom_item(
        self,
        target: LineItemTarget,
        description: str,
        category: ServiceCategory,
        total: Decimal,
        actor: Actor,
        billing_mode: BillingMode = BillingMode.BILLABLE,
        notes: Optional[str] = None,
        commit: bool = True,
    ) -> LineItem:
        """
        Add an operator-priced charge; its total is not subject to margin.

        With ``commit=False`` the item is only flushed, for callers that
        write it together with other rows.

        Raises:
            Forbidden: If the actor is not staff
            ValidationFailed: If the description is empty or total not positive
        """
        ensure_role(actor, STAFF_ROLES, action="add line items")
        description = (description or "").strip()
        if not description:
            raise ValidationFailed("Description is required", field="description")
        total = Decimal(total)
        if total <= 0:
            raise ValidationFailed("Total must be greater than zero", field="total")

        await self._prepare_target(target, actor)

        item = await self.repository.add(
            LineItem(
                **target.owner_fields(),
                line_item_type=LineItemType.CUSTOM,
                category=category,
                description=description,
                total=total,
                billing_mode=billing_mode,
                notes=notes,
                added_by=actor.id,
                is_voided=False,
            )
        )
        if commit:
            await self.session.commit()

        logger.info(
            "Custom line item added",
            line_item_id=str(item.id),
            owner_id=str(target.owner_id),
            category=category.value,
            total=str(total),
        )
        return item

    async def void_item(self, item_id: uuid.UUID, reason: str, actor: Actor) -> LineItem:
        """
        Void a line item permanently.

        Raises:
            Forbidden: If the actor is not staff
            ValidationFailed: If the reason is shorter than 10 characters
                or the item is already voided
            NotFound: If the item does not exist
        """
        ensure_role(actor, STAFF_ROLES, action="void line items")
        reason = require_reason(reason, field="void_reason")

        item = await self.repository.get(item_id)
        if item is None:
            raise NotFound("Line item", item_id)
        if item.purpose_type == PurposeType.ORDER and item.order_id is not None:
            await self._lock_editable_order(item.order_id, actor)
        elif item.purpose_type == PurposeType.INBOUND_REQUEST:
            self._ensure_inbound_scope(actor)
        item = await self.repository.get(item_id, for_update=True)
        if item.is_voided:
            raise ValidationFailed("Line item is already voided", field="line_item_id")

        item.is_voided = True
        item.void_reason = reason
        item.voided_by = actor.id
        item.voided_at = datetime.now(timezone.utc)
        await self.repository.flush()
        await self.session.commit()

        logger.info(
            "Line item voided",
            line_item_id=str(item.id),
            owner_id=str(item.owner_id),
            total=str(item.total),
        )
        return item

    async def list_items(
        self,
        target: LineItemTarget,
        actor: Actor,
        include_voided: bool = False,
    ) -> Sequence[LineItem]:
        """
        List items of an order or inbound request.

        Clients may read the items of their own company's orders only.
        """
        if target.purpose_type == PurposeType.ORDER:
            order = await self.order_repository.get(target.owner_id)
            if order is None:
                raise NotFound("Order", target.owner_id)
            ensure_company_access(actor, order.company_id)
        else:
            self._ensure_inbound_scope(actor)

        if actor.role == Role.CLIENT:
            include_voided = False

        return await self.repository.list_for_owner(
            target.purpose_type, target.owner_id, include_voided=include_voided
        )
