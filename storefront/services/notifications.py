import structlog
from sqlalchemy.exc import SQLAlchemyError

from ..model import Notification

logger = structlog.get_logger(__name__)


class Notifier:
    """Fire-and-forget order notifications.

    Called after the order transaction committed; a failure here is logged
    and never reaches the caller.
    """

    def __init__(self, session):
        self.session = session

    def order_confirmed(self, order) -> None:
        logger.info("order confirmed notification", order_id=order.id, order_code=order.code,
                    user_id=order.user_id, session_id=order.session_id)
        if order.user_id is None:
            return
        try:
            self.session.add(Notification(
                user_id=order.user_id,
                order_id=order.id,
                message=f"Your order {order.code} has been confirmed",
            ))
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("order notification failed", order_id=order.id)
