from __future__ import annotations

import structlog

from ..model import Order
from ..model.order import ORDER_TRANSITIONS
from ..utils.db import paginate, transactional, utcnow
from .identity import Identity
from .results import ErrorCode, Ok, Result, fail

logger = structlog.get_logger(__name__)


class OrderDesk:
    """Order history for customers and the admin-side status moves."""

    def __init__(self, session, clock=utcnow):
        self.session = session
        self.clock = clock

    def list_for(self, identity: Identity | None, page=1, per_page=20, status=None,
                 code=None, start=None, end=None) -> Result:
        q = self.session.query(Order)
        if identity is not None:
            q = q.filter(identity.filter(Order))
        if status:
            q = q.filter(Order.status == status)
        if code:
            q = q.filter(Order.code == code)
        if start is not None:
            q = q.filter(Order.created_at >= start)
        if end is not None:
            q = q.filter(Order.created_at < end)
        q = q.order_by(Order.created_at.desc(), Order.id.desc())
        return Ok(paginate(q, page, per_page), "orders")

    def get(self, order_id, identity: Identity | None = None) -> Result:
        order = self.session.get(Order, order_id)
        if order is None or (identity is not None and not identity.matches(order)):
            return fail(ErrorCode.ORDER_NOT_FOUND, "Order not found", order_id=order_id)
        return Ok(order, "order")

    @transactional
    def advance(self, order_id, status) -> Result:
        order = self.session.get(Order, order_id)
        if order is None:
            return fail(ErrorCode.ORDER_NOT_FOUND, "Order not found", order_id=order_id)
        if status not in ORDER_TRANSITIONS:
            return fail(ErrorCode.INVALID_ORDER_STATE, f"Unknown order status {status!r}", status=status)
        if not order.can_move_to(status):
            return fail(ErrorCode.INVALID_ORDER_STATE, f"Cannot move order from {order.status} to {status}",
                        current=order.status, requested=status)

        previous = order.status
        order.status = status
        if status == "cancelled":
            order.cancelled_at = self.clock()
        if status == "failed" and order.can_pay_to("failed"):
            order.payment_status = "failed"
        logger.info("order status changed", order_id=order.id, previous=previous, status=status)
        return Ok(order, "Order status updated")

    @transactional
    def refund(self, order_id) -> Result:
        order = self.session.get(Order, order_id)
        if order is None:
            return fail(ErrorCode.ORDER_NOT_FOUND, "Order not found", order_id=order_id)
        if not order.can_pay_to("refunded"):
            return fail(ErrorCode.INVALID_ORDER_STATE, "Only paid orders can be refunded",
                        payment_status=order.payment_status)
        order.payment_status = "refunded"
        payment = order.latest_payment()
        if payment is not None:
            payment.status = "refunded"
        logger.info("order refunded", order_id=order.id, amount=str(order.total_amount))
        return Ok(order, "Order refunded")
