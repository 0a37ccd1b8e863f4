# api/routers/cron.py
from typing import Dict, Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api.deps import get_services, verify_cron_secret
from services.factory import Services
from utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"], dependencies=[Depends(verify_cron_secret)])


@router.get("/publish")
def cron_publish(services: Services = Depends(get_services)) -> Dict[str, Any]:
    try:
        results = services.publisher.sweep_due()
    except Exception as e:
        logger.error(f"Publish sweep failed: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": str(e)})
    return {"success": True, "processed": len(results), "results": [r.to_dict() for r in results]}


@router.get("/autopilot")
def cron_autopilot(services: Services = Depends(get_services)) -> Dict[str, Any]:
    try:
        results = services.autopilot.run_due_users()
    except Exception as e:
        logger.error(f"Autopilot cron pass failed: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": str(e)})
    return {"success": True, "processed": len(results), "results": [r.to_dict() for r in results]}
