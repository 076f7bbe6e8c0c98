"""
Tests for the line item ledger.
"""

import uuid
from decimal import Decimal

import pytest

from fulfillment.core.exceptions import Forbidden, NotFound, ValidationFailed
from fulfillment.core.security import Actor, Role
from fulfillment.database.models.line_item import (
    BillingMode,
    LineItemType,
    PurposeType,
    ServiceCategory,
    ServiceType,
)
from fulfillment.database.models.order import OrderStatus
from fulfillment.services.line_items.ledger import LineItemLedger, LineItemTarget

from tests.conftest import OTHER_COMPANY_ID


@pytest.fixture
def add_service_type(store):
    def add(
        name: str = "Forklift handling",
        category: ServiceCategory = ServiceCategory.HANDLING,
        default_rate: str | None = "150.00",
        is_active: bool = True,
    ) -> ServiceType:
        service_type = ServiceType(
            id=uuid.uuid4(),
            name=name,
            category=category,
            unit="hour",
            default_rate=Decimal(default_rate) if default_rate is not None else None,
            is_active=is_active,
        )
        store.service_types[service_type.id] = service_type
        return service_type

    return add


@pytest.fixture
def pricing_order(add_order):
    return add_order(OrderStatus.PRICING_REVIEW)


class TestCatalogItems:
    @pytest.mark.asyncio
    async def test_total_is_quantity_times_catalog_rate(
        self, ledger: LineItemLedger, logistics, pricing_order, add_service_type, session
    ) -> None:
        service_type = add_service_type(default_rate="150.00")

        item = await ledger.add_catalog_item(
            LineItemTarget.order(pricing_order.id),
            service_type.id,
            Decimal("2.5"),
            logistics,
        )

        assert item.line_item_type == LineItemType.CATALOG
        assert item.unit_rate == Decimal("150.00")
        assert item.total == Decimal("375.000")
        assert item.order_id == pricing_order.id
        assert item.purpose_type == PurposeType.ORDER
        assert item.description == "Forklift handling"
        assert item.added_by == logistics.id
        assert session.commits == 1

    @pytest.mark.asyncio
    async def test_quantity_must_be_positive(
        self, ledger: LineItemLedger, logistics, pricing_order, add_service_type
    ) -> None:
        service_type = add_service_type()

        with pytest.raises(ValidationFailed):
            await ledger.add_catalog_item(
                LineItemTarget.order(pricing_order.id), service_type.id, Decimal("0"), logistics
            )

    @pytest.mark.asyncio
    async def test_unpriced_service_must_be_custom(
        self, ledger: LineItemLedger, logistics, pricing_order, add_service_type
    ) -> None:
        service_type = add_service_type(default_rate=None)

        with pytest.raises(ValidationFailed, match="custom item"):
            await ledger.add_catalog_item(
                LineItemTarget.order(pricing_order.id), service_type.id, Decimal("1"), logistics
            )

    @pytest.mark.asyncio
    async def test_inactive_service_is_rejected(
        self, ledger: LineItemLedger, logistics, pricing_order, add_service_type
    ) -> None:
        service_type = add_service_type(is_active=False)

        with pytest.raises(ValidationFailed, match="inactive"):
            await ledger.add_catalog_item(
                LineItemTarget.order(pricing_order.id), service_type.id, Decimal("1"), logistics
            )

    @pytest.mark.asyncio
    async def test_metadata_only_on_transport_services(
        self, ledger: LineItemLedger, logistics, pricing_order, add_service_type
    ) -> None:
        handling = add_service_type()
        transport = add_service_type(
            name="Extra trip", category=ServiceCategory.TRANSPORT, default_rate="400.00"
        )
        trip = {"trip_direction": "RETURN", "truck_plate": "D 12345"}

        with pytest.raises(ValidationFailed):
            await ledger.add_catalog_item(
                LineItemTarget.order(pricing_order.id),
                handling.id,
                Decimal("1"),
                logistics,
                metadata=trip,
            )

        item = await ledger.add_catalog_item(
            LineItemTarget.order(pricing_order.id),
            transport.id,
            Decimal("1"),
            logistics,
            metadata=trip,
        )
        assert item.item_metadata == trip

    @pytest.mark.asyncio
    async def test_unknown_service_type(
        self, ledger: LineItemLedger, logistics, pricing_order
    ) -> None:
        with pytest.raises(NotFound):
            await ledger.add_catalog_item(
                LineItemTarget.order(pricing_order.id), uuid.uuid4(), Decimal("1"), logistics
            )

    @pytest.mark.asyncio
    async def test_clients_cannot_add_items(
        self, ledger: LineItemLedger, client_actor, pricing_order, add_service_type
    ) -> None:
        service_type = add_service_type()

        with pytest.raises(Forbidden):
            await ledger.add_catalog_item(
                LineItemTarget.order(pricing_order.id), service_type.id, Decimal("1"), client_actor
            )

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status", [OrderStatus.DRAFT, OrderStatus.QUOTED, OrderStatus.CONFIRMED]
    )
    async def test_order_must_be_in_pricing(
        self, ledger: LineItemLedger, logistics, add_order, add_service_type, status
    ) -> None:
        order = add_order(status)
        service_type = add_service_type()

        with pytest.raises(ValidationFailed):
            await ledger.add_catalog_item(
                LineItemTarget.order(order.id), service_type.id, Decimal("1"), logistics
            )

    @pytest.mark.asyncio
    async def test_inbound_request_items_need_no_order(
        self, ledger: LineItemLedger, logistics, add_service_type
    ) -> None:
        service_type = add_service_type()
        request_id = uuid.uuid4()

        item = await ledger.add_catalog_item(
            LineItemTarget.inbound_request(request_id), service_type.id, Decimal("3"), logistics
        )

        assert item.inbound_request_id == request_id
        assert item.order_id is None
        assert item.purpose_type == PurposeType.INBOUND_REQUEST

    @pytest.mark.asyncio
    async def test_company_scoped_staff_cannot_add_inbound_request_items(
        self, ledger: LineItemLedger, add_service_type, store
    ) -> None:
        service_type = add_service_type()
        scoped = Actor(
            id="logistics-2", role=Role.LOGISTICS, companies=frozenset({OTHER_COMPANY_ID})
        )

        with pytest.raises(Forbidden):
            await ledger.add_catalog_item(
                LineItemTarget.inbound_request(uuid.uuid4()),
                service_type.id,
                Decimal("1"),
                scoped,
            )
        with pytest.raises(Forbidden):
            await ledger.add_custom_item(
                LineItemTarget.inbound_request(uuid.uuid4()),
                "Pallet wrapping",
                ServiceCategory.HANDLING,
                Decimal("40"),
                scoped,
            )

        assert store.line_items == {}

    @pytest.mark.asyncio
    async def test_company_scoped_staff_cannot_void_inbound_request_items(
        self, ledger: LineItemLedger, logistics, add_service_type
    ) -> None:
        service_type = add_service_type()
        item = await ledger.add_catalog_item(
            LineItemTarget.inbound_request(uuid.uuid4()), service_type.id, Decimal("1"), logistics
        )
        scoped = Actor(
            id="logistics-2", role=Role.LOGISTICS, companies=frozenset({OTHER_COMPANY_ID})
        )

        with pytest.raises(Forbidden):
            await ledger.void_item(item.id, "Charged to the wrong request", scoped)

        assert not item.is_voided


class TestCustomItems:
    @pytest.mark.asyncio
    async def test_add_custom_item(
        self, ledger: LineItemLedger, admin, pricing_order
    ) -> None:
        item = await ledger.add_custom_item(
            LineItemTarget.order(pricing_order.id),
            "  Night shift surcharge ",
            ServiceCategory.OTHER,
            Decimal("150.00"),
            admin,
            billing_mode=BillingMode.COMPLIMENTARY,
        )

        assert item.line_item_type == LineItemType.CUSTOM
        assert item.description == "Night shift surcharge"
        assert item.billing_mode == BillingMode.COMPLIMENTARY
        assert item.unit_rate is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("total", ["0", "-5"])
    async def test_total_must_be_positive(
        self, ledger: LineItemLedger, admin, pricing_order, total
    ) -> None:
        with pytest.raises(ValidationFailed):
            await ledger.add_custom_item(
                LineItemTarget.order(pricing_order.id),
                "Surcharge",
                ServiceCategory.OTHER,
                Decimal(total),
                admin,
            )

    @pytest.mark.asyncio
    async def test_description_is_required(
        self, ledger: LineItemLedger, admin, pricing_order
    ) -> None:
        with pytest.raises(ValidationFailed):
            await ledger.add_custom_item(
                LineItemTarget.order(pricing_order.id),
                "   ",
                ServiceCategory.OTHER,
                Decimal("10"),
                admin,
            )


class TestVoidAndList:
    @pytest.mark.asyncio
    async def test_void_keeps_item_for_audit(
        self, ledger: LineItemLedger, logistics, pricing_order, store
    ) -> None:
        item = await ledger.add_custom_item(
            LineItemTarget.order(pricing_order.id),
            "Surcharge",
            ServiceCategory.OTHER,
            Decimal("50"),
            logistics,
        )

        voided = await ledger.void_item(item.id, "Client brought own crew", logistics)

        assert voided.is_voided
        assert voided.void_reason == "Client brought own crew"
        assert voided.voided_by == logistics.id
        assert voided.voided_at is not None
        assert item.id in store.line_items

    @pytest.mark.asyncio
    async def test_void_requires_reason(
        self, ledger: LineItemLedger, logistics, pricing_order
    ) -> None:
        item = await ledger.add_custom_item(
            LineItemTarget.order(pricing_order.id),
            "Surcharge",
            ServiceCategory.OTHER,
            Decimal("50"),
            logistics,
        )

        with pytest.raises(ValidationFailed, match="at least 10 characters"):
            await ledger.void_item(item.id, "dup", logistics)

    @pytest.mark.asyncio
    async def test_item_cannot_be_voided_twice(
        self, ledger: LineItemLedger, logistics, pricing_order
    ) -> None:
        item = await ledger.add_custom_item(
            LineItemTarget.order(pricing_order.id),
            "Surcharge",
            ServiceCategory.OTHER,
            Decimal("50"),
            logistics,
        )
        await ledger.void_item(item.id, "Entered by mistake", logistics)

        with pytest.raises(ValidationFailed, match="already voided"):
            await ledger.void_item(item.id, "Entered by mistake", logistics)

    @pytest.mark.asyncio
    async def test_void_unknown_item(self, ledger: LineItemLedger, logistics) -> None:
        with pytest.raises(NotFound):
            await ledger.void_item(uuid.uuid4(), "Entered by mistake", logistics)

    @pytest.mark.asyncio
    async def test_clients_never_see_voided_items(
        self, ledger: LineItemLedger, logistics, client_actor, pricing_order
    ) -> None:
        target = LineItemTarget.order(pricing_order.id)
        kept = await ledger.add_custom_item(
            target, "Surcharge", ServiceCategory.OTHER, Decimal("50"), logistics
        )
        dropped = await ledger.add_custom_item(
            target, "Duplicate", ServiceCategory.OTHER, Decimal("50"), logistics
        )
        await ledger.void_item(dropped.id, "Entered by mistake", logistics)

        staff_view = await ledger.list_items(target, logistics, include_voided=True)
        client_view = await ledger.list_items(target, client_actor, include_voided=True)

        assert {i.id for i in staff_view} == {kept.id, dropped.id}
        assert [i.id for i in client_view] == [kept.id]

    @pytest.mark.asyncio
    async def test_other_company_cannot_list(
        self, ledger: LineItemLedger, other_client, pricing_order
    ) -> None:
        with pytest.raises(Forbidden):
            await ledger.list_items(LineItemTarget.order(pricing_order.id), other_client)

    @pytest.mark.asyncio
    async def test_inbound_request_items_are_staff_only(
        self, ledger: LineItemLedger, client_actor
    ) -> None:
        with pytest.raises(Forbidden):
            await ledger.list_items(LineItemTarget.inbound_request(uuid.uuid4()), client_actor)
