import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from .. import db
from ..models.course import Course, Lesson, LessonWatch
from ..models.enrollment import Enrollment
from ..models.runtime import RuntimeState
from ..models.user import User
from ..scorm.scoring import (
    clamp,
    engagement_time_score,
    is_scorm_completed,
    parse_course_duration,
    round_half_up,
)
from ..scorm.telemetry import derive_metrics, merge_state, sanitize_state
from .errors import (
    CourseNotFound,
    LessonNotFound,
    NotEnrolled,
    NotIncentivized,
    RuntimeMissing,
    RuntimeTerminated,
    UserNotFound,
)
from .relayer import Relayer, SYNCED
from .settlement import SettlementCoordinator

logger = logging.getLogger(__name__)

# Partial credit: a lesson counts once half of it has been watched
WATCHED_THRESHOLD = 50
# Incentivized progress stays below 100 until the runtime reports completion
INCENTIVIZED_PROGRESS_CAP = 99


class ProgressTracker:
    def __init__(self, relayer=None, coordinator=None):
        self._relayer = relayer
        self._coordinator = coordinator

    @property
    def relayer(self):
        if self._relayer is None:
            self._relayer = Relayer()
        return self._relayer

    @property
    def coordinator(self):
        if self._coordinator is None:
            self._coordinator = SettlementCoordinator(self.relayer)
        return self._coordinator

    # Enrollment

    def enroll(self, user_id, course_id):
        """Create the enrollment locally, then mirror it on the ledger"""
        user = db.session.get(User, user_id)
        if not user:
            raise UserNotFound()
        course = db.session.get(Course, course_id)
        if not course or not course.is_published:
            raise CourseNotFound()

        enrollment = self._find_enrollment(user_id, course_id)
        if enrollment is None:
            try:
                enrollment = Enrollment(user_id=user_id, course_id=course_id)
                db.session.add(enrollment)
                db.session.commit()
                logger.info(f"Enrolled user {user_id} in course {course_id}")
            except IntegrityError:
                # Concurrent enrollment won the unique key
                db.session.rollback()
                enrollment = self._find_enrollment(user_id, course_id)

        if enrollment.on_chain_enrolled:
            return enrollment, None

        submission = self.relayer.enroll_user(user, course_id)
        if submission.status == SYNCED:
            enrollment.on_chain_enrolled = True
            enrollment.enroll_tx_hash = submission.tx_hash
            db.session.commit()
        else:
            logger.warning(f"Ledger enrollment for user {user_id} in course {course_id} "
                           f"left {submission.status}: {submission.error}")
        return enrollment, submission

    # Free courses

    def record_lesson_watch(self, user_id, lesson_id, progress_percent):
        lesson = db.session.get(Lesson, lesson_id)
        if not lesson:
            raise LessonNotFound()

        course_id = lesson.course_id
        if self._find_enrollment(user_id, course_id) is None:
            raise NotEnrolled()

        percent = int(clamp(int(progress_percent), 0, 100))
        now = datetime.utcnow()

        watch = LessonWatch.query.filter_by(user_id=user_id, lesson_id=lesson_id).first()
        if watch is None:
            watch = LessonWatch(user_id=user_id, lesson_id=lesson_id,
                                watch_progress_percent=0, is_watched=False)
            db.session.add(watch)

        # A watched lesson stays watched; progress never moves backwards
        watch.watch_progress_percent = max(watch.watch_progress_percent or 0, percent)
        if not watch.is_watched and percent >= WATCHED_THRESHOLD:
            watch.is_watched = True
            watch.watched_at = now
        watch.last_watched_at = now
        db.session.commit()

        course_progress = self.recalculate_progress(user_id, course_id)
        result = {
            'saved': True,
            'courseProgress': course_progress,
            'completed': False,
            'txHash': None,
            'syncStatus': None,
        }

        if lesson.course.is_incentivized:
            return result

        if course_progress >= 100:
            settlement = self.coordinator.complete_free_course(user_id, course_id)
            result.update({
                'completed': settlement.completed,
                'txHash': settlement.tx_hash,
                'syncStatus': settlement.sync_status,
            })
        return result

    def recalculate_progress(self, user_id, course_id):
        enrollment = self._find_enrollment(user_id, course_id)
        if enrollment is None:
            raise NotEnrolled()
        course = enrollment.course

        if enrollment.is_completed:
            progress = 100
        elif course.is_incentivized:
            progress = self._runtime_progress(course, enrollment.runtime)
        else:
            watched = (LessonWatch.query
                       .join(Lesson, LessonWatch.lesson_id == Lesson.id)
                       .filter(LessonWatch.user_id == user_id,
                               Lesson.course_id == course_id,
                               LessonWatch.is_watched.is_(True))
                       .count())
            total = len(course.lessons)
            progress = round_half_up(100 * watched / total) if total else 0

        enrollment.progress_percent = progress
        db.session.commit()
        return progress

    # SCORM runtime

    def initialize_runtime(self, user_id, course_id):
        self._require_incentivized(user_id, course_id)

        runtime = self._find_runtime(user_id, course_id)
        if runtime is not None:
            if not runtime.is_terminated:
                runtime.initialized_at = datetime.utcnow()
                db.session.commit()
            return runtime

        try:
            runtime = RuntimeState(user_id=user_id, course_id=course_id, cmi_state={},
                                   initialized_at=datetime.utcnow())
            db.session.add(runtime)
            db.session.commit()
            logger.info(f"Initialized runtime for user {user_id} in course {course_id}")
        except IntegrityError:
            db.session.rollback()
            runtime = self._find_runtime(user_id, course_id)
        return runtime

    def record_runtime_commit(self, user_id, course_id, raw_state, final=False):
        """Merge a runtime commit and refresh derived metrics.

        Completion is never marked here; finalization is a separate claim
        step that needs the learner's proof signature.
        """
        enrollment = self._require_incentivized(user_id, course_id)
        runtime = self._find_runtime(user_id, course_id)

        if runtime is not None and runtime.is_terminated and not final:
            raise RuntimeTerminated()

        previous_state = runtime.cmi_state if runtime is not None else {}
        previous_seconds = runtime.total_time_seconds if runtime is not None else 0
        merged = merge_state(previous_state, sanitize_state(raw_state))
        metrics = derive_metrics(merged, previous_seconds)

        now = datetime.utcnow()
        if runtime is None:
            runtime = RuntimeState(user_id=user_id, course_id=course_id, initialized_at=now)
            db.session.add(runtime)

        runtime.cmi_state = merged
        runtime.completion_status = metrics.completion_status
        runtime.success_status = metrics.success_status
        runtime.raw_score = metrics.raw_score
        runtime.scaled_score = metrics.scaled_score
        runtime.normalized_score = metrics.quiz_score
        runtime.total_time_seconds = metrics.total_time_seconds
        runtime.last_commit_at = now

        if not enrollment.is_completed:
            enrollment.progress_percent = self._runtime_progress(enrollment.course, runtime)
            enrollment.quiz_score = metrics.quiz_score

        db.session.commit()
        logger.debug(f"Runtime commit for user {user_id} in course {course_id}: "
                     f"{metrics.completion_status}/{metrics.success_status} "
                     f"score={metrics.quiz_score} time={metrics.total_time_seconds}s")
        return runtime

    def terminate_runtime(self, user_id, course_id, raw_state=None):
        self._require_incentivized(user_id, course_id)

        runtime = self._find_runtime(user_id, course_id)
        if runtime is not None and runtime.is_terminated:
            return runtime

        if raw_state:
            runtime = self.record_runtime_commit(user_id, course_id, raw_state, final=True)

        if runtime is None:
            raise RuntimeMissing()

        now = datetime.utcnow()
        runtime.terminated_at = now
        runtime.last_commit_at = now
        db.session.commit()
        logger.info(f"Terminated runtime for user {user_id} in course {course_id}")
        return runtime

    def get_runtime(self, user_id, course_id):
        self._require_incentivized(user_id, course_id)
        return self._find_runtime(user_id, course_id)

    # Claim actions

    def mark_proof_signed(self, user_id, course_id):
        enrollment = self._require_incentivized(user_id, course_id)
        if not enrollment.proof_signed:
            enrollment.proof_signed = True
            enrollment.proof_signed_at = datetime.utcnow()
            db.session.commit()
            logger.info(f"Proof signed for user {user_id} in course {course_id}")
        return enrollment

    def track_dapp_visit(self, user_id, course_id):
        enrollment = self._require_incentivized(user_id, course_id)
        if not enrollment.dapp_visit_tracked:
            enrollment.dapp_visit_tracked = True
            enrollment.dapp_visited_at = datetime.utcnow()
            db.session.commit()
            logger.info(f"dApp visit tracked for user {user_id} in course {course_id}")
        return enrollment

    # Helpers

    def _runtime_progress(self, course, runtime):
        if runtime is None:
            return 0
        if is_scorm_completed(runtime.completion_status, runtime.success_status):
            return 100
        engagement = engagement_time_score(runtime.total_time_seconds or 0,
                                           parse_course_duration(course.duration))
        return min(INCENTIVIZED_PROGRESS_CAP, engagement)

    def _find_enrollment(self, user_id, course_id):
        return Enrollment.query.filter_by(user_id=user_id, course_id=course_id).first()

    def _find_runtime(self, user_id, course_id):
        return RuntimeState.query.filter_by(user_id=user_id, course_id=course_id).first()

    def _require_incentivized(self, user_id, course_id):
        enrollment = self._find_enrollment(user_id, course_id)
        if enrollment is None:
            raise NotEnrolled()
        if not enrollment.course.is_incentivized:
            raise NotIncentivized('SCORM runtime is only available for incentivized courses')
        return enrollment
