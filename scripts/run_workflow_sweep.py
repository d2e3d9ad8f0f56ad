"""One workflow pass, for cron or a k8s CronJob."""
import logging
import sys

from app.core.logging import setup_logging
from app.db.session import SessionLocal
from app.services.scheduler import WorkflowScheduler

logger = logging.getLogger("run_workflow_sweep")


def main() -> int:
    setup_logging()
    db = SessionLocal()
    try:
        result = WorkflowScheduler(db).run_sweep()
    finally:
        db.close()

    logger.info(
        "Sweep finished",
        extra={
            "advanced": result.advanced_cycles,
            "completed_phases": result.completed_phases,
            "reminders": len(result.reminders_sent),
            "escalations": len(result.escalations),
            "failed": result.failed_cycles,
        },
    )
    return 1 if result.failed_cycles else 0


if __name__ == "__main__":
    sys.exit(main())
