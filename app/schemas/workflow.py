from pydantic import BaseModel


class SweepFailure(BaseModel):
    cycle_id: str
    error: str


class SweepResultOut(BaseModel):
    advanced_cycles: list[str] = []
    completed_phases: list[str] = []
    reminders_sent: list[str] = []
    escalations: list[str] = []
    skipped_cycles: list[str] = []
    failed_cycles: list[SweepFailure] = []
