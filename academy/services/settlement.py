"""Settlement of course completions: local commit first, ledger mirror second.

The enrollment row is the source of truth. Completion is written with a
compare-and-set on ``is_completed`` so concurrent callers cannot score or
pay twice; the ledger submission happens only after that commit and its
failure never rolls the completion back. Anything left unsynced is picked
up again by ``retry_sync`` or ``reconcile_unsynced``.
"""
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional

from flask import current_app

from .. import db
from ..models.enrollment import Enrollment, EnrollmentState
from ..models.user import User
from ..scorm import scoring
from .errors import (
    NotEligible,
    NotEnrolled,
    NotIncentivized,
    NotYetCompleted,
    ProofRequired,
    RuntimeMissing,
    ScoreUnavailable,
    ScormNotComplete,
)
from .relayer import Relayer, SYNCED

logger = logging.getLogger(__name__)

UNSYNCED = 'unsynced'


@dataclass
class SettlementResult:
    completed: bool
    final_score: Optional[int] = None
    completion_flags: int = 0
    leaderboard_eligible: bool = False
    tx_hash: Optional[str] = None
    sync_status: str = UNSYNCED
    already_synced: bool = False
    error: Optional[str] = None

    def to_dict(self):
        data = asdict(self)
        return {
            'completed': data['completed'],
            'finalScore': data['final_score'],
            'completionFlags': data['completion_flags'],
            'leaderboardEligible': data['leaderboard_eligible'],
            'txHash': data['tx_hash'],
            'syncStatus': data['sync_status'],
            'alreadySynced': data['already_synced'],
            'error': data['error'],
        }


class SettlementCoordinator:
    def __init__(self, relayer=None, identity_provider=None):
        self.relayer = relayer or Relayer()
        self.identity_provider = (identity_provider if identity_provider is not None
                                  else current_app.config.get('IDENTITY_MULTIPLIER'))

    def complete_free_course(self, user_id, course_id):
        """Mark a free course completed once every lesson is watched"""
        enrollment = self._get_enrollment(user_id, course_id)

        if enrollment.is_completed:
            return self._cached_result(enrollment)

        if enrollment.course.is_incentivized:
            raise NotEligible('Incentivized courses are completed through final claim')

        if enrollment.progress_percent < 100:
            raise NotEligible()

        enrollment.ensure_transition(EnrollmentState.COMPLETED)

        # Free courses carry no score
        won = self._compare_and_set(enrollment, {
            'is_completed': True,
            'completed_at': datetime.utcnow(),
            'engagement_time_score': None,
            'base_score': None,
            'final_score': 0,
            'leaderboard_eligible': False,
            'completion_flags': 0,
        })
        if not won:
            return self._cached_result(self._reload(enrollment))

        db.session.commit()
        logger.info(f"Completed free course {course_id} for user {user_id}")

        return self._settle(enrollment, 0, 0)

    def finalize_incentivized_course(self, user_id, course_id):
        """Score an incentivized course once and settle the score on the ledger"""
        enrollment = self._get_enrollment(user_id, course_id)
        course = enrollment.course

        if not course.is_incentivized:
            raise NotIncentivized()

        # The score is a one-time settlement; never recompute it
        if enrollment.is_completed:
            return self._cached_result(enrollment)

        runtime = enrollment.runtime
        if runtime is None:
            raise RuntimeMissing()

        scorm_complete = scoring.is_scorm_completed(runtime.completion_status, runtime.success_status)
        if not scorm_complete:
            raise ScormNotComplete()

        if runtime.normalized_score is None:
            raise ScoreUnavailable()

        if not enrollment.proof_signed:
            raise ProofRequired()

        enrollment.ensure_transition(EnrollmentState.FINALIZED)

        quiz_score = runtime.normalized_score
        engagement = scoring.engagement_time_score(
            runtime.total_time_seconds or 0,
            scoring.parse_course_duration(course.duration)
        )
        base = scoring.base_score(quiz_score, engagement)
        action_multiplier = scoring.action_boost_multiplier(
            enrollment.proof_signed, enrollment.dapp_visit_tracked)
        id_multiplier = scoring.identity_multiplier(
            enrollment.user.wallet_address, self.identity_provider)
        final = scoring.final_score(base, action_multiplier, id_multiplier)
        eligible = scoring.is_leaderboard_eligible(enrollment.proof_signed, scorm_complete)
        flags = scoring.completion_flags(
            enrollment.proof_signed, enrollment.dapp_visit_tracked, scorm_complete)

        won = self._compare_and_set(enrollment, {
            'is_completed': True,
            'completed_at': datetime.utcnow(),
            'quiz_score': quiz_score,
            'engagement_time_score': engagement,
            'base_score': base,
            'action_boost_multiplier': action_multiplier,
            'id_multiplier': id_multiplier,
            'final_score': final,
            'leaderboard_eligible': eligible,
            'completion_flags': flags,
        })
        if not won:
            return self._cached_result(self._reload(enrollment))

        # Same transaction as the score so points are paid exactly once
        User.query.filter_by(id=user_id).update(
            {User.total_points: User.total_points + final},
            synchronize_session=False
        )
        db.session.commit()
        logger.info(f"Finalized course {course_id} for user {user_id}: "
                    f"quiz={quiz_score} engagement={engagement} base={base} final={final} flags={flags}")

        return self._settle(enrollment, final, flags)

    def retry_sync(self, user_id, course_id):
        """Resubmit a completed enrollment with its persisted score and flags"""
        enrollment = self._get_enrollment(user_id, course_id)

        if not enrollment.is_completed:
            raise NotYetCompleted()

        if enrollment.on_chain_completion_synced:
            result = self._cached_result(enrollment)
            result.already_synced = True
            return result

        logger.info(f"Retrying ledger sync for course {course_id}, user {user_id}")
        return self._settle(enrollment, enrollment.final_score or 0, enrollment.completion_flags or 0)

    def reconcile_unsynced(self, limit=None):
        """Sweep completed-but-unsynced enrollments through retry_sync"""
        query = (Enrollment.query
                 .filter_by(is_completed=True, on_chain_completion_synced=False)
                 .order_by(Enrollment.completed_at.asc()))
        if limit:
            query = query.limit(limit)

        keys = [(e.user_id, e.course_id) for e in query.all()]
        logger.info(f"Reconciling {len(keys)} unsynced enrollments")

        results = []
        for user_id, course_id in keys:
            result = self.retry_sync(user_id, course_id)
            results.append((user_id, course_id, result))
            if result.sync_status != SYNCED:
                logger.warning(f"Enrollment {user_id}/{course_id} still unsynced: {result.sync_status} {result.error}")
        return results

    def _get_enrollment(self, user_id, course_id):
        enrollment = Enrollment.query.filter_by(user_id=user_id, course_id=course_id).first()
        if not enrollment:
            raise NotEnrolled()
        return enrollment

    def _compare_and_set(self, enrollment, values):
        rows = (Enrollment.query
                .filter_by(id=enrollment.id, is_completed=False)
                .update(values, synchronize_session=False))
        if rows != 1:
            db.session.rollback()
            logger.info(f"Enrollment {enrollment.user_id}/{enrollment.course_id} was completed concurrently")
            return False
        return True

    def _reload(self, enrollment):
        db.session.refresh(enrollment)
        return enrollment

    def _settle(self, enrollment, score, flags):
        db.session.refresh(enrollment)
        submission = self.relayer.complete_course(enrollment.user, enrollment.course_id, score, flags)

        if submission.status == SYNCED:
            if not enrollment.on_chain_completion_synced:
                enrollment.ensure_transition(EnrollmentState.SYNCED)
                enrollment.on_chain_completion_synced = True
                enrollment.completion_tx_hash = submission.tx_hash
                db.session.commit()
        else:
            logger.warning(f"Completion of course {enrollment.course_id} for user {enrollment.user_id} "
                           f"left {submission.status}: {submission.error}")

        return SettlementResult(
            completed=True,
            final_score=enrollment.final_score,
            completion_flags=enrollment.completion_flags,
            leaderboard_eligible=enrollment.leaderboard_eligible,
            tx_hash=submission.tx_hash,
            sync_status=submission.status,
            error=submission.error,
        )

    def _cached_result(self, enrollment):
        return SettlementResult(
            completed=True,
            final_score=enrollment.final_score,
            completion_flags=enrollment.completion_flags,
            leaderboard_eligible=enrollment.leaderboard_eligible,
            tx_hash=enrollment.completion_tx_hash,
            sync_status=SYNCED if enrollment.on_chain_completion_synced else UNSYNCED,
        )
