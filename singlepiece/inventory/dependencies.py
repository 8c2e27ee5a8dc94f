from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from singlepiece.db.dependencies import get_session
from singlepiece.inventory.reservations import ReservationManager
from singlepiece.notifications.services import Notifier, get_notifier


def get_manager(request: Request, session: AsyncSession = Depends(get_session)) -> ReservationManager:
    # same session object as the route's own `get_session`, fastapi caches it per request
    return ReservationManager(session, clock=request.app.state.clock)


def get_request_notifier(request: Request) -> Notifier:
    return getattr(request.app.state, "notifier", None) or get_notifier()
