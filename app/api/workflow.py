from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.rbac import require_roles
from app.db.session import get_db
from app.models.user import User
from app.schemas.workflow import SweepFailure, SweepResultOut
from app.services.scheduler import WorkflowScheduler

router = APIRouter(prefix="/workflow", tags=["workflow"])


@router.post("/sweep", response_model=SweepResultOut)
def run_sweep(
    now: datetime | None = Query(default=None, description="Evaluate deadlines as of this instant (UTC)"),
    db: Session = Depends(get_db),
    _: User = Depends(require_roles("ADMIN")),
):
    """
    Run one workflow pass: advance or close overdue phases and send due
    reminders. A failing cycle is reported and does not stop the others.
    """
    result = WorkflowScheduler(db).run_sweep(now)
    return SweepResultOut(
        advanced_cycles=result.advanced_cycles,
        completed_phases=result.completed_phases,
        reminders_sent=result.reminders_sent,
        escalations=result.escalations,
        skipped_cycles=result.skipped_cycles,
        failed_cycles=[SweepFailure(**f) for f in result.failed_cycles],
    )
