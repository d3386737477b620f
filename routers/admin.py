"""routers/admin.py - Health check, admin config and the alerts cycle trigger."""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Header
from pydantic import BaseModel
from sqlalchemy import text

import config
from db import SessionLocal
from models import AdminConfig
from routers.common import require_admin
from services.alert_service import run_all_alerts_cycle

logger = logging.getLogger(__name__)

router = APIRouter()


class AdminConfigUpdatePayload(BaseModel):
    value: Optional[str] = None
    alerts_enabled: Optional[bool] = None


# =====================================================================
# SECTION: HEALTH
# =====================================================================

@router.get("/")
def home():
    return {"message": "TrueDest backend is running"}


@router.get("/health")
def health():
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except Exception:
        logger.exception("[admin] health check database query failed")
        database = "error"
    finally:
        db.close()
    return {"status": "ok" if database == "ok" else "degraded", "database": database}


# =====================================================================
# SECTION: ALERTS
# =====================================================================

@router.post("/admin/run-alerts")
def trigger_alerts_cycle(
    background_tasks: BackgroundTasks,
    x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
):
    require_admin(x_admin_token)

    if not config.master_alerts_enabled():
        return {"detail": "Alerts are currently disabled via environment"}

    background_tasks.add_task(run_all_alerts_cycle)
    return {"detail": "Alerts cycle queued"}


# =====================================================================
# SECTION: ADMIN CONFIG
# =====================================================================

@router.put("/admin/config/{key}")
def update_admin_config(
    key: str,
    payload: AdminConfigUpdatePayload,
    x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
):
    require_admin(x_admin_token)

    db = SessionLocal()
    try:
        row = db.query(AdminConfig).filter(AdminConfig.key == key).first()
        if row is None:
            row = AdminConfig(key=key, alerts_enabled=True)
            db.add(row)
        if payload.value is not None:
            row.value = payload.value
        if payload.alerts_enabled is not None:
            row.alerts_enabled = payload.alerts_enabled
        db.commit()
        logger.info(f"[admin] config updated key={key}")
        return {"key": row.key, "value": row.value, "alerts_enabled": row.alerts_enabled}
    finally:
        db.close()
