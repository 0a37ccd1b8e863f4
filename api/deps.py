"""
API Dependencies

Per-request database connections, service wiring, the shared autopilot
loop and the header checks used by the routers.
"""

import hmac
from typing import Generator, Optional

from fastapi import Depends, Header, HTTPException

from config import settings
from data.database import DatabaseConnection
from services.autopilot_service import AutopilotLoop
from services.factory import Services, autopilot_session, build_services

_autopilot_loop: Optional[AutopilotLoop] = None


def get_database() -> Generator:
    db = DatabaseConnection()
    try:
        yield db
    finally:
        db.close()


def get_services(db: DatabaseConnection = Depends(get_database)) -> Services:
    return build_services(db)


def get_autopilot_loop() -> AutopilotLoop:
    global _autopilot_loop
    if _autopilot_loop is None:
        _autopilot_loop = AutopilotLoop(autopilot_session)
    return _autopilot_loop


def shutdown_autopilot_loop() -> None:
    if _autopilot_loop is not None:
        _autopilot_loop.stop_all()


def get_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Authentication happens upstream; the proxy forwards the user id."""
    if not x_user_id:
        raise HTTPException(401, "Unauthorized")
    return x_user_id


def verify_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    expected = f"Bearer {settings.CRON_SECRET}"
    if not settings.CRON_SECRET or not hmac.compare_digest((authorization or "").encode(), expected.encode()):
        raise HTTPException(401, "Unauthorized")
