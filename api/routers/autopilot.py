# api/routers/autopilot.py
import json
from dataclasses import asdict, replace
from typing import Dict, Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from api.deps import get_autopilot_loop, get_services, get_user_id
from config import settings
from data.models import AutopilotSettings, SensitiveAction
from services.autopilot_service import AutopilotLoop
from services.factory import Services
from utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/autopilot", tags=["autopilot"])


class ToggleIn(BaseModel):
    action: str


class SettingsIn(BaseModel):
    is_enabled: Optional[bool] = None
    template_id: Optional[str] = None
    check_interval: Optional[int] = None
    generate_cards: Optional[bool] = None
    sensitive_filter: Optional[bool] = None
    sensitive_action: Optional[SensitiveAction] = None
    notify_on_new_card: Optional[bool] = None
    auto_publish: Optional[bool] = None
    social_account_id: Optional[str] = None
    publish_delay_minutes: Optional[int] = None


def _settings_out(autopilot_settings: AutopilotSettings) -> Dict[str, Any]:
    data = asdict(autopilot_settings)
    data["sensitive_action"] = autopilot_settings.sensitive_action.value
    data["last_run_at"] = autopilot_settings.last_run_at.isoformat() if autopilot_settings.last_run_at else None
    return data


@router.get("")
def get_autopilot(user_id: str = Depends(get_user_id),
                  services: Services = Depends(get_services)) -> Dict[str, Any]:
    autopilot_settings = services.db.get_autopilot_settings(user_id)
    if autopilot_settings is None:
        autopilot_settings = AutopilotSettings(user_id=user_id)
        services.db.save_autopilot_settings(autopilot_settings)
    templates = [{"id": t.id, "name": t.name} for t in services.db.list_templates(user_id)]
    return {
        "settings": _settings_out(autopilot_settings),
        "templates": templates,
        "stats": services.autopilot.get_stats(user_id),
    }


@router.put("/settings")
def update_settings(body: SettingsIn, user_id: str = Depends(get_user_id),
                    services: Services = Depends(get_services)) -> Dict[str, Any]:
    changes = body.model_dump(exclude_unset=True)
    if changes.get("check_interval") is not None and changes["check_interval"] < settings.MIN_CHECK_INTERVAL_MINUTES:
        raise HTTPException(400, f"check_interval must be at least {settings.MIN_CHECK_INTERVAL_MINUTES} minute(s)")
    if changes.get("publish_delay_minutes") is not None and changes["publish_delay_minutes"] < 0:
        raise HTTPException(400, "publish_delay_minutes cannot be negative")
    if changes.get("template_id") and services.db.get_template(changes["template_id"]) is None:
        raise HTTPException(404, "Template not found")

    current = services.db.get_autopilot_settings(user_id) or AutopilotSettings(user_id=user_id)
    updated = replace(current, **changes)
    services.db.save_autopilot_settings(updated)
    return _settings_out(updated)


@router.post("")
def toggle_autopilot(body: ToggleIn, user_id: str = Depends(get_user_id),
                     loop: AutopilotLoop = Depends(get_autopilot_loop)) -> Dict[str, Any]:
    result = loop.toggle(user_id, body.action)
    if not result["success"] and body.action not in ("start", "stop"):
        raise HTTPException(400, result["message"])
    return result


@router.post("/run")
def run_autopilot(user_id: str = Depends(get_user_id),
                  services: Services = Depends(get_services)) -> Dict[str, Any]:
    result = services.autopilot.run_once(user_id, force=True)
    return result.to_dict()


@router.get("/runs")
def list_runs(limit: int = settings.AUTOPILOT_HISTORY_LIMIT, user_id: str = Depends(get_user_id),
              services: Services = Depends(get_services)) -> Dict[str, Any]:
    runs = services.autopilot.get_runs(user_id, limit)
    return {"runs": json.loads(runs.to_json(orient="records", date_format="iso"))}
