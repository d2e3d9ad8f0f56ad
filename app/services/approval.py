import logging
import uuid

from sqlalchemy.orm import Session

from app.core.audit import log_event
from app.core.clock import utcnow
from app.core.exceptions import (
    InvalidStateError,
    NotAuthorizedError,
    NotFoundError,
    ValidationError,
)
from app.models.rbac import ROLE_ADMIN, ROLE_MANAGER
from app.models.review import Review
from app.models.user import User
from app.services.directory import Directory, DirectoryUser, SqlDirectory

logger = logging.getLogger(__name__)

APPROVER_ROLES = (ROLE_MANAGER, ROLE_ADMIN)


class ApprovalWorkflow:
    """
    Manager/admin sign-off on submitted reviews.

    A review is actionable when status == 'submitted' OR approval_status ==
    'pending'. The two fields can drift apart when older submission paths
    update only one of them, so either one is accepted.
    """

    def __init__(self, db: Session, directory: Directory | None = None, actor: User | None = None):
        self.db = db
        self.directory = directory or SqlDirectory(db)
        self.actor = actor

    def get_review(self, review_id) -> Review:
        try:
            rid = review_id if isinstance(review_id, uuid.UUID) else uuid.UUID(str(review_id))
        except ValueError:
            raise NotFoundError("Review", review_id)
        review = self.db.query(Review).filter(Review.id == rid).with_for_update().one_or_none()
        if not review:
            raise NotFoundError("Review", review_id)
        return review

    def approve(self, review_id, approver_id) -> Review:
        review = self.get_review(review_id)
        self._assert_actionable(review, "approved")
        approver = self._resolve_approver(approver_id)

        prev = review.status
        review.approval_status = "approved"
        review.status = "approved"
        review.approved_by_id = approver.id
        review.approved_at = utcnow()

        self._audit(review, "REVIEW_APPROVED", approver, {"from": prev, "to": review.status})
        self.db.commit()
        logger.info("Review %s approved by %s", review.id, approver.id)
        return review

    def reject(self, review_id, approver_id, reason: str | None) -> Review:
        if not reason or not reason.strip():
            raise ValidationError("Rejection reason is required", details={"field": "reason"})

        review = self.get_review(review_id)
        self._assert_actionable(review, "rejected")
        approver = self._resolve_approver(approver_id)

        prev = review.status
        review.approval_status = "rejected"
        review.status = "rejected"
        review.rejection_reason = reason.strip()

        self._audit(review, "REVIEW_REJECTED", approver, {"from": prev, "to": review.status, "reason": review.rejection_reason})
        self.db.commit()
        logger.info("Review %s rejected by %s", review.id, approver.id)
        return review

    def list_pending_for_manager(self, manager_id) -> list[Review]:
        reports = self.directory.get_direct_reports(manager_id)
        q = self._pending_query()
        if not reports:
            # Single-contributor "manager" accounts: their own manager reviews
            logger.info("Manager %s has no direct reports, using manager reviews", manager_id)
            q = q.filter(Review.type == "manager", Review.reviewer_id == uuid.UUID(str(manager_id)))
        else:
            q = q.filter(Review.reviewee_id.in_([u.id for u in reports]))
        return q.order_by(Review.submitted_at, Review.id).all()

    def list_all_pending(self) -> list[Review]:
        return self._pending_query().order_by(Review.submitted_at, Review.id).all()

    def list_pending_approvals(self, user_id, is_admin: bool) -> list[Review]:
        if is_admin:
            return self.list_all_pending()
        return self.list_pending_for_manager(user_id)

    def _pending_query(self):
        return self.db.query(Review).filter(
            Review.status == "submitted",
            Review.approval_status == "pending",
        )

    def _assert_actionable(self, review: Review, verb: str) -> None:
        if review.status != "submitted" and review.approval_status != "pending":
            raise InvalidStateError(
                f"Only submitted reviews can be {verb}. "
                f"Current status: {review.status}, approval status: {review.approval_status}",
                details={"status": review.status, "approval_status": review.approval_status},
            )

    def _resolve_approver(self, approver_id) -> DirectoryUser:
        approver = self.directory.get_user(approver_id)
        if approver is None:
            raise NotFoundError("Approver", approver_id)
        if approver.role_name not in APPROVER_ROLES:
            raise NotAuthorizedError(
                "Only managers or admins can approve or reject reviews",
                required_roles=list(APPROVER_ROLES),
                role=approver.role_name,
            )
        return approver

    def _audit(self, review: Review, action: str, approver: DirectoryUser, metadata: dict) -> None:
        log_event(
            db=self.db,
            actor=self.actor,
            action=action,
            entity_type="review",
            entity_id=review.id,
            metadata={**metadata, "cycle_id": str(review.cycle_id), "approver_id": str(approver.id)},
        )
