"""
Admin endpoints (scheduler control, audit integrity)
"""

from typing import Dict, Any

from fastapi import APIRouter, Depends

from .auth import ResolveSystem, get_resolve_system, require_super_admin
from ..directory import User


router = APIRouter()


@router.post("/scheduler/sweep")
async def run_scheduler_sweep(
    user: User = Depends(require_super_admin),
    system: ResolveSystem = Depends(get_resolve_system)
) -> Dict[str, Any]:
    """Run one timed-transition sweep now"""
    report = system.scheduler.run_once()
    return report.to_dict()


@router.get("/scheduler/status")
async def get_scheduler_status(
    user: User = Depends(require_super_admin),
    system: ResolveSystem = Depends(get_resolve_system)
) -> Dict[str, Any]:
    """Whether the background scheduler runs, and what its last sweep did"""
    scheduler = system.scheduler
    return {
        "running": scheduler.running,
        "intervalSeconds": scheduler.interval_seconds,
        "lastSweep": scheduler.last_report.to_dict() if scheduler.last_report else None,
    }


@router.get("/audit/verify")
async def verify_audit_trail(
    user: User = Depends(require_super_admin),
    system: ResolveSystem = Depends(get_resolve_system)
) -> Dict[str, Any]:
    """Check the audit hash chain"""
    return system.audit_trail.verify_integrity()
