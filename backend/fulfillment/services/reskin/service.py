"""
Reskin workflow service.

A reskin request asks for an order's asset to be rebranded; processing
it opens the request and charges its cost to the order. While any
request of an order is pending, the order stays in AWAITING_FABRICATION.
Completing a request creates the rebranded asset; cancelling it either
lets the order continue or cancels the whole order.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.exceptions import NotFound, ValidationFailed, require_reason
from fulfillment.core.logging import get_logger
from fulfillment.core.security import Actor, Role, ensure_company_access, ensure_role
from fulfillment.database.models.asset import Asset
from fulfillment.database.models.line_item import LineItem, ServiceCategory
from fulfillment.database.models.reskin import ReskinRequest, ReskinStatus
from fulfillment.services.bookings.repository import BookingRepository
from fulfillment.services.line_items.ledger import LineItemLedger, LineItemTarget
from fulfillment.services.orders.enums import STAFF_ROLES, CancellationReason
from fulfillment.services.orders.events import TransitionOccurred
from fulfillment.services.orders.service import OrderService
from fulfillment.services.reskin.repository import ReskinRepository

logger = get_logger(__name__)


class ReskinOrderAction(str, Enum):
    """What happens to the order when a reskin is cancelled."""

    CONTINUE = "continue"
    CANCEL_ORDER = "cancel_order"


class ReskinService:
    def __init__(
        self,
        session: AsyncSession,
        repository: Optional[ReskinRepository] = None,
        booking_repository: Optional[BookingRepository] = None,
        order_service: Optional[OrderService] = None,
        ledger: Optional[LineItemLedger] = None,
    ):
        self.session = session
        self.repository = repository or ReskinRepository(session)
        self.assets = booking_repository or BookingRepository(session)
        self.orders = order_service or OrderService(session)
        self.ledger = ledger or LineItemLedger(session)

    async def _lock_pending(self, reskin_id: uuid.UUID) -> ReskinRequest:
        reskin = await self.repository.get(reskin_id, for_update=True)
        if reskin is None:
            raise NotFound("Reskin request", reskin_id)
        if reskin.status != ReskinStatus.PENDING:
            raise ValidationFailed(
                f"Reskin request is already {reskin.status.value}",
                field="status",
                status=reskin.status.value,
            )
        return reskin

    async def list_for_order(
        self,
        order_id: uuid.UUID,
        actor: Actor,
    ) -> Sequence[ReskinRequest]:
        await self.orders.get_order(order_id, actor)
        return await self.repository.list_for_order(order_id)

    async def process_reskin(
        self,
        order_id: uuid.UUID,
        order_item_id: uuid.UUID,
        actor: Actor,
        target_brand: str,
        cost: Decimal,
        client_notes: Optional[str] = None,
        admin_notes: Optional[str] = None,
    ) -> tuple[ReskinRequest, LineItem]:
        """
        Open a reskin request for an order item and charge its cost.

        The pending request and a custom ``RESKIN`` line item named
        "<asset name> Rebrand" are written in one transaction while the
        order row is locked. The order must still be in pricing
        (SUBMITTED, PRICING_REVIEW or PENDING_APPROVAL) so that the cost
        reaches the quote.

        Returns:
            (reskin request, cost line item)

        Raises:
            Forbidden: If the actor is not ADMIN or lacks company access
            NotFound: If the order, the item or its asset does not exist
            ValidationFailed: If the brand is empty, the cost is not
                positive, the order is no longer being priced or the item
                already has an open or completed reskin
        """
        ensure_role(actor, {Role.ADMIN}, action="process reskin requests")
        target_brand = (target_brand or "").strip()
        if not target_brand:
            raise ValidationFailed("Target brand is required", field="target_brand")
        cost = Decimal(cost)
        if cost <= 0:
            raise ValidationFailed("Reskin cost must be greater than zero", field="cost")

        try:
            order = await self.orders.repository.get(order_id, for_update=True)
            if order is None:
                raise NotFound("Order", order_id)
            ensure_company_access(actor, order.company_id)

            item = next((i for i in order.items if i.id == order_item_id), None)
            if item is None:
                raise NotFound("Order item", order_item_id)
            for existing in await self.repository.list_for_order(order_id):
                if (
                    existing.order_item_id == order_item_id
                    and existing.status != ReskinStatus.CANCELLED
                ):
                    raise ValidationFailed(
                        f"Order item already has a {existing.status.value} reskin request",
                        field="order_item_id",
                        reskin_id=existing.id,
                    )
            asset = await self.assets.get_asset(item.asset_id)
            if asset is None:
                raise NotFound("Asset", item.asset_id)

            line_item = await self.ledger.add_custom_item(
                LineItemTarget.order(order_id),
                f"{asset.name} Rebrand",
                ServiceCategory.RESKIN,
                cost,
                actor,
                notes=admin_notes,
                commit=False,
            )
            reskin = await self.repository.add(
                ReskinRequest(
                    order_id=order_id,
                    order_item_id=order_item_id,
                    original_asset_id=asset.id,
                    target_brand=target_brand,
                    client_notes=client_notes,
                    status=ReskinStatus.PENDING,
                    completion_photos=[],
                )
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "Reskin request processed",
            reskin_id=str(reskin.id),
            order_id=str(order_id),
            order_item_id=str(order_item_id),
            line_item_id=str(line_item.id),
            cost=str(cost),
        )
        return reskin, line_item

    async def complete_reskin(
        self,
        reskin_id: uuid.UUID,
        actor: Actor,
        new_asset_name: str,
        completion_photos: Sequence[str],
        notes: Optional[str] = None,
    ) -> ReskinRequest:
        """
        Mark a reskin as done and register the rebranded asset.

        The new asset belongs to the company of the original asset and
        holds the quantity of the order item that was reskinned.

        Raises:
            Forbidden: If the actor is not staff or lacks access to the
                order's company
            NotFound: If the request, its order item or asset is missing
            ValidationFailed: If the request is not pending, the name is
                empty or no completion photo is given
        """
        ensure_role(actor, STAFF_ROLES, action="complete reskins")
        new_asset_name = (new_asset_name or "").strip()
        if not new_asset_name:
            raise ValidationFailed("New asset name is required", field="new_asset_name")
        photos = [p.strip() for p in completion_photos or [] if p and p.strip()]
        if not photos:
            raise ValidationFailed(
                "At least one completion photo is required",
                field="completion_photos",
            )

        try:
            reskin = await self._lock_pending(reskin_id)
            await self.orders.get_order(reskin.order_id, actor)
            order_item = await self.repository.get_order_item(reskin.order_item_id)
            if order_item is None:
                raise NotFound("Order item", reskin.order_item_id)
            original = await self.assets.get_asset(reskin.original_asset_id)
            if original is None:
                raise NotFound("Asset", reskin.original_asset_id)

            new_asset = await self.assets.add_asset(
                Asset(
                    name=new_asset_name,
                    company_id=original.company_id,
                    total_quantity=order_item.quantity,
                    refurb_days_estimate=original.refurb_days_estimate,
                    source_asset_id=original.id,
                )
            )

            reskin.status = ReskinStatus.COMPLETE
            reskin.new_asset_id = new_asset.id
            reskin.completed_at = datetime.now(timezone.utc)
            reskin.completed_by = actor.id
            reskin.completion_notes = notes
            reskin.completion_photos = photos
            await self.repository.flush()
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "Reskin completed",
            reskin_id=str(reskin_id),
            order_id=str(reskin.order_id),
            new_asset_id=str(new_asset.id),
            target_brand=reskin.target_brand,
        )
        return reskin

    async def cancel_reskin(
        self,
        reskin_id: uuid.UUID,
        actor: Actor,
        reason: str,
        order_action: ReskinOrderAction,
    ) -> ReskinRequest:
        """
        Cancel a pending reskin request.

        With ``cancel_order`` the order is cancelled (reason
        ``fabrication_failed``) in the same transaction as the request.

        Raises:
            Forbidden: If the actor is not ADMIN
            ValidationFailed: If the reason is too short or the request is
                not pending
            InvalidTransition: If the order can no longer be cancelled
        """
        ensure_role(actor, {Role.ADMIN}, action="cancel reskins")
        reason = require_reason(reason)
        order_action = ReskinOrderAction(order_action)

        event: Optional[TransitionOccurred] = None
        try:
            reskin = await self._lock_pending(reskin_id)
            await self.orders.get_order(reskin.order_id, actor)

            reskin.status = ReskinStatus.CANCELLED
            reskin.cancelled_at = datetime.now(timezone.utc)
            reskin.cancelled_by = actor.id
            reskin.cancellation_reason = reason
            await self.repository.flush()

            if order_action == ReskinOrderAction.CANCEL_ORDER:
                _, event = await self.orders.cancel_in_transaction(
                    reskin.order_id,
                    actor,
                    reason=CancellationReason.FABRICATION_FAILED.value,
                    notes=f"Reskin cancelled: {reason}",
                )
        except Exception:
            await self.session.rollback()
            raise

        if event is not None:
            await self.orders.commit_and_publish(event)
        else:
            await self.session.commit()

        logger.info(
            "Reskin cancelled",
            reskin_id=str(reskin_id),
            order_id=str(reskin.order_id),
            order_action=order_action.value,
        )
        return reskin
