from pydantic import BaseModel


class CycleStats(BaseModel):
    """Statistics for a review cycle"""
    cycle_id: str
    cycle_name: str
    current_phase: str
    total_reviews: int = 0
    reviews_by_status: dict[str, int] = {}  # pending, in_progress, submitted, approved, rejected, calibrated
    reviews_by_type: dict[str, int] = {}  # self, peer, manager, upward
    pending_approvals: int = 0
    submitted_rate: float = 0.0  # Percentage of reviews submitted or beyond
    approved_rate: float = 0.0  # Percentage of reviews approved
