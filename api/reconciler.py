"""
Reconciler API Endpoints

Manual trigger for one timeout sweep (ops / cron callers). The background
loop started in main.py runs the same sweep on an interval.
"""
from fastapi import APIRouter, HTTPException

import logging

from schemas import SweepReport
from core.reconciler import TimeoutReconciler

router = APIRouter(prefix="/api/reconciler", tags=["reconciler"])
logger = logging.getLogger(__name__)

reconciler = TimeoutReconciler()


@router.post("/sweep", response_model=SweepReport)
def sweep():
    """
    Run one sweep now.

    Returns skipped=true when a sweep is already in progress.
    """
    try:
        return reconciler.run_once()
    except Exception as e:
        logger.error(f"Sweep failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
