from enum import Enum
from .. import db
from ..scorm.scoring import is_scorm_completed
from ..services.errors import InvalidTransition
from datetime import datetime


class EnrollmentState(str, Enum):
    NOT_STARTED = 'NOT_STARTED'
    IN_PROGRESS = 'IN_PROGRESS'
    SCORM_COMPLETE = 'SCORM_COMPLETE'
    FINALIZED = 'FINALIZED'
    COMPLETED = 'COMPLETED'
    SYNCED = 'SYNCED'


# Incentivized path: runtime completion, then explicit finalization, then sync
INCENTIVIZED_TRANSITIONS = {
    EnrollmentState.NOT_STARTED: {EnrollmentState.IN_PROGRESS, EnrollmentState.SCORM_COMPLETE},
    EnrollmentState.IN_PROGRESS: {EnrollmentState.SCORM_COMPLETE},
    EnrollmentState.SCORM_COMPLETE: {EnrollmentState.FINALIZED},
    EnrollmentState.FINALIZED: {EnrollmentState.SYNCED},
    EnrollmentState.SYNCED: set(),
}

# Free path: scoring collapses into a fixed completion
FREE_TRANSITIONS = {
    EnrollmentState.NOT_STARTED: {EnrollmentState.IN_PROGRESS, EnrollmentState.COMPLETED},
    EnrollmentState.IN_PROGRESS: {EnrollmentState.COMPLETED},
    EnrollmentState.COMPLETED: {EnrollmentState.SYNCED},
    EnrollmentState.SYNCED: set(),
}


class Enrollment(db.Model):
    """Enrollment model for tracking user course progress, score and settlement"""
    __tablename__ = 'enrollments'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'course_id', name='uq_enrollments_user_course'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    course_id = db.Column(db.Integer, db.ForeignKey('courses.id'), nullable=False)

    progress_percent = db.Column(db.Integer, nullable=False, default=0)
    is_completed = db.Column(db.Boolean, nullable=False, default=False)
    completed_at = db.Column(db.DateTime)

    # Score breakdown, written once at completion
    quiz_score = db.Column(db.Integer)
    engagement_time_score = db.Column(db.Integer)
    base_score = db.Column(db.Integer)
    action_boost_multiplier = db.Column(db.Float)
    id_multiplier = db.Column(db.Float)
    final_score = db.Column(db.Integer)
    leaderboard_eligible = db.Column(db.Boolean, nullable=False, default=False)
    completion_flags = db.Column(db.Integer, nullable=False, default=0)

    # Claim actions supplied by external collaborators
    proof_signed = db.Column(db.Boolean, nullable=False, default=False)
    proof_signed_at = db.Column(db.DateTime)
    dapp_visit_tracked = db.Column(db.Boolean, nullable=False, default=False)
    dapp_visited_at = db.Column(db.DateTime)

    # Ledger mirror
    on_chain_enrolled = db.Column(db.Boolean, nullable=False, default=False)
    enroll_tx_hash = db.Column(db.String(80))
    on_chain_completion_synced = db.Column(db.Boolean, nullable=False, default=False)
    completion_tx_hash = db.Column(db.String(80))

    enrolled_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<Enrollment {self.user_id} - {self.course_id}>'

    @property
    def runtime(self):
        from .runtime import RuntimeState
        return RuntimeState.query.filter_by(user_id=self.user_id, course_id=self.course_id).first()

    @property
    def state(self):
        """Current position in the enrollment state machine"""
        if self.is_completed:
            if self.on_chain_completion_synced:
                return EnrollmentState.SYNCED
            if self.course.is_incentivized:
                return EnrollmentState.FINALIZED
            return EnrollmentState.COMPLETED

        if self.course.is_incentivized:
            runtime = self.runtime
            if runtime is None:
                return EnrollmentState.NOT_STARTED
            if is_scorm_completed(runtime.completion_status, runtime.success_status):
                return EnrollmentState.SCORM_COMPLETE
            return EnrollmentState.IN_PROGRESS

        if self.progress_percent > 0:
            return EnrollmentState.IN_PROGRESS
        return EnrollmentState.NOT_STARTED

    def ensure_transition(self, target):
        """Raise InvalidTransition unless target is reachable from the current state"""
        table = INCENTIVIZED_TRANSITIONS if self.course.is_incentivized else FREE_TRANSITIONS
        current = self.state
        if target not in table.get(current, set()):
            raise InvalidTransition(
                f"Enrollment {self.user_id}/{self.course_id} cannot move from {current.value} to {target.value}"
            )
        return current

    def to_dict(self):
        """Read-only progress view"""
        return {
            'userId': self.user_id,
            'courseId': self.course_id,
            'state': self.state.value,
            'progressPercent': self.progress_percent,
            'isCompleted': self.is_completed,
            'completedAt': self.completed_at.isoformat() if self.completed_at else None,
            'quizScore': self.quiz_score,
            'engagementTimeScore': self.engagement_time_score,
            'baseScore': self.base_score,
            'finalScore': self.final_score,
            'leaderboardEligible': self.leaderboard_eligible,
            'completionFlags': self.completion_flags,
            'proofSigned': self.proof_signed,
            'dappVisitTracked': self.dapp_visit_tracked,
            'onChainEnrolled': self.on_chain_enrolled,
            'onChainCompletionSynced': self.on_chain_completion_synced,
            'completionTxHash': self.completion_tx_hash,
        }
