"""Transaction helpers shared by the services."""

from datetime import datetime, timezone
from functools import wraps

import structlog

from ..services.results import Failure

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    # naive UTC, matching what the DateTime columns store
    return datetime.now(timezone.utc).replace(tzinfo=None)


def transactional(fn):
    """Commit when the operation succeeds, roll back on a Failure or an exception.

    The wrapped method's instance must expose ``self.session``.
    """

    @wraps(fn)
    def wrapper(self, *args, **kwargs):
        try:
            result = fn(self, *args, **kwargs)
        except Exception:
            self.session.rollback()
            logger.exception("transaction rolled back", operation=fn.__qualname__)
            raise
        if isinstance(result, Failure):
            self.session.rollback()
        else:
            self.session.commit()
        return result

    return wrapper


def paginate(query, page=1, per_page=20, max_per_page=100) -> dict:
    page = max(1, int(page or 1))
    per_page = min(max(1, int(per_page or 20)), max_per_page)
    total = query.order_by(None).count()
    items = query.offset((page - 1) * per_page).limit(per_page).all()
    return {
        "items": items,
        "page": page,
        "per_page": per_page,
        "total": total,
        "pages": (total + per_page - 1) // per_page,
    }
