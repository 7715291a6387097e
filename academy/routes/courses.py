from flask import Blueprint, current_app, request, jsonify
from flask_login import login_required, current_user
import logging

from ..models.course import Lesson, LessonWatch
from ..models.enrollment import Enrollment, EnrollmentState
from ..models.ledger import LedgerTransaction
from ..services.errors import NotEnrolled
from ..services.leaderboard import DEFAULT_LIMIT, get_leaderboard
from ..services.progress import ProgressTracker
from ..services.settlement import SettlementCoordinator

logger = logging.getLogger(__name__)

courses_bp = Blueprint('courses', __name__)


@courses_bp.route('/<int:course_id>/enroll', methods=['POST'])
@login_required
def enroll(course_id):
    """Enroll in a course and mirror the enrollment on the ledger"""
    enrollment, submission = ProgressTracker().enroll(current_user.id, course_id)
    return jsonify({
        'enrolled': True,
        'onChainEnrolled': enrollment.on_chain_enrolled,
        'txHash': enrollment.enroll_tx_hash or (submission.tx_hash if submission else None),
        'syncStatus': submission.status if submission else 'synced',
    })


@courses_bp.route('/<int:course_id>/progress')
@login_required
def progress(course_id):
    """Read-only course progress, including the settled score fields"""
    enrollment = Enrollment.query.filter_by(user_id=current_user.id, course_id=course_id).first()
    if not enrollment:
        raise NotEnrolled()

    data = enrollment.to_dict()
    if enrollment.course.is_incentivized:
        runtime = enrollment.runtime
        data.update({
            'isIncentivized': True,
            'scormCompletionStatus': runtime.completion_status if runtime else None,
            'scormSuccessStatus': runtime.success_status if runtime else None,
            'scormQuizScore': runtime.normalized_score if runtime else None,
            'scormTotalTimeSeconds': runtime.total_time_seconds if runtime else 0,
            'canClaimFinal': enrollment.state == EnrollmentState.SCORM_COMPLETE and enrollment.proof_signed,
        })
    else:
        watches = (LessonWatch.query
                   .join(Lesson, LessonWatch.lesson_id == Lesson.id)
                   .filter(LessonWatch.user_id == current_user.id, Lesson.course_id == course_id)
                   .order_by(Lesson.order_index)
                   .all())
        data.update({
            'isIncentivized': False,
            'lessons': [watch.to_dict() for watch in watches],
        })

    transactions = (LedgerTransaction.query
                    .filter_by(user_id=current_user.id, course_id=course_id)
                    .order_by(LedgerTransaction.created_at.asc(), LedgerTransaction.id.asc())
                    .all())
    data['ledgerTransactions'] = [tx.to_dict() for tx in transactions]
    return jsonify(data)


@courses_bp.route('/<int:course_id>/complete', methods=['POST'])
@login_required
def complete(course_id):
    """Complete a free course once all lessons are watched"""
    result = SettlementCoordinator().complete_free_course(current_user.id, course_id)
    return jsonify(result.to_dict())


@courses_bp.route('/<int:course_id>/claim/actions/signature', methods=['POST'])
@login_required
def claim_signature(course_id):
    """Record the learner's proof-of-completion signature.

    Signature recovery is delegated to the PROOF_VERIFIER hook, a callable
    (user, course_id, payload) -> (valid, error).
    """
    verifier = current_app.config.get('PROOF_VERIFIER')
    if verifier is None:
        logger.error("PROOF_VERIFIER is not configured")
        return jsonify({'error': 'Signature verification is not configured'}), 501

    payload = request.get_json(silent=True) or {}
    if not payload.get('message') or not payload.get('signature'):
        return jsonify({'error': 'message and signature are required'}), 400

    valid, error = verifier(current_user, course_id, payload)
    if not valid:
        logger.warning(f"Rejected proof for user {current_user.id} in course {course_id}: {error}")
        return jsonify({'error': error or 'Invalid signature'}), 400

    ProgressTracker().mark_proof_signed(current_user.id, course_id)
    return jsonify({'verified': True})


@courses_bp.route('/<int:course_id>/claim/actions/dapp-visit', methods=['POST'])
@login_required
def claim_dapp_visit(course_id):
    ProgressTracker().track_dapp_visit(current_user.id, course_id)
    return jsonify({'tracked': True})


@courses_bp.route('/<int:course_id>/claim/final', methods=['POST'])
@login_required
def claim_final(course_id):
    """Finalize an incentivized course: score it and settle on the ledger"""
    result = SettlementCoordinator().finalize_incentivized_course(current_user.id, course_id)
    return jsonify(result.to_dict())


@courses_bp.route('/<int:course_id>/sync', methods=['POST'])
@login_required
def sync(course_id):
    """Retry the ledger settlement of a completed course"""
    result = SettlementCoordinator().retry_sync(current_user.id, course_id)
    return jsonify(result.to_dict())


@courses_bp.route('/<int:course_id>/leaderboard')
def leaderboard(course_id):
    """Public ranking of leaderboard-eligible completions"""
    limit = request.args.get('limit', DEFAULT_LIMIT, type=int)
    course, entries = get_leaderboard(course_id, limit)
    return jsonify({'course': course.to_dict(), 'entries': entries})
