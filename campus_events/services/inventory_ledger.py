"""
Inventory ledger for Campus Events Service.
Authoritative stock and aggregate counters of an event.

Stock checks at submission are advisory. The decrement happens in commit(),
as a conditional UPDATE, so stock and capacity never go past their limits
even when two approvals race for the last unit.
"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import and_, case
from sqlalchemy.orm import Session

from campus_events.core.exceptions import InvalidVariantError, OutOfStockError, CapacityExceededError
from campus_events.models.event import Event, MerchandiseVariant

logger = logging.getLogger(__name__)


class InventoryLedger:
    """
    Stock, revenue, registration and attendance accounting for events.
    """

    def reserve_check(self, event: Event, variant_id: Optional[str], quantity: int) -> MerchandiseVariant:
        """
        Locate a variant and confirm it has enough stock. Does not mutate.

        Raises:
            InvalidVariantError: variant does not exist on the event
            OutOfStockError: stock is below the requested quantity
        """
        variant = event.get_variant(variant_id)
        if variant is None:
            raise InvalidVariantError(variant_id)
        if variant.stock_quantity < quantity:
            raise OutOfStockError(variant_id, quantity, variant.stock_quantity)
        return variant

    def capacity_check(self, event: Event):
        """Advisory capacity check for normal events."""
        if event.registration_limit is not None and event.total_registrations >= event.registration_limit:
            raise CapacityExceededError(event.registration_limit)

    def commit(self, session: Session, event: Event, variant_id: Optional[str] = None, quantity: int = 1) -> Decimal:
        """
        Commit one fully approved registration to the ledger.
        Must run inside the finalizing transaction, exactly once per registration.

        Returns:
            Revenue credited

        Raises:
            InvalidVariantError, OutOfStockError, CapacityExceededError
        """
        if event.is_merchandise:
            variant = session.query(MerchandiseVariant).filter(
                and_(
                    MerchandiseVariant.event_id == event.id,
                    MerchandiseVariant.variant_id == variant_id
                )
            ).first()
            if variant is None:
                raise InvalidVariantError(variant_id)

            # Price at commit time, not at submission
            unit_price = Decimal(variant.price or 0)

            updated = session.query(MerchandiseVariant).filter(
                and_(
                    MerchandiseVariant.id == variant.id,
                    MerchandiseVariant.stock_quantity >= quantity
                )
            ).update({
                MerchandiseVariant.stock_quantity: MerchandiseVariant.stock_quantity - quantity
            }, synchronize_session=False)

            if updated == 0:
                session.refresh(variant)
                raise OutOfStockError(variant_id, quantity, variant.stock_quantity)

            session.expire(variant)
            amount = unit_price * quantity
        else:
            amount = Decimal(event.registration_fee or 0)

        event_filter = Event.id == event.id
        if event.registration_limit is not None:
            event_filter = and_(
                Event.id == event.id,
                Event.total_registrations < Event.registration_limit
            )

        updated = session.query(Event).filter(event_filter).update({
            Event.total_registrations: Event.total_registrations + 1,
            Event.total_revenue: Event.total_revenue + amount,
            Event.version: Event.version + 1,
        }, synchronize_session=False)

        if updated == 0:
            raise CapacityExceededError(event.registration_limit)

        session.expire(event)
        logger.info(f"Ledger commit for event {event.id}: variant={variant_id} quantity={quantity} revenue={amount}")
        return amount

    def adjust_attendance(self, session: Session, event_id: int, delta: int):
        """Add delta to the event attendance counter, clamped at zero."""
        if delta == 0:
            return

        if delta > 0:
            new_value = Event.total_attendance + delta
        else:
            new_value = case(
                (Event.total_attendance >= -delta, Event.total_attendance + delta),
                else_=0
            )

        session.query(Event).filter(Event.id == event_id).update({
            Event.total_attendance: new_value
        }, synchronize_session=False)
        logger.debug(f"Attendance adjusted by {delta} for event {event_id}")


# Global ledger instance
inventory_ledger = InventoryLedger()
