import logging

from .. import db
from ..models.course import Course
from ..models.enrollment import Enrollment
from ..scorm.scoring import clamp
from .errors import CourseNotFound, NotIncentivized

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
MAX_LIMIT = 500
# The CSV export serves operators and may go deeper than the public board
EXPORT_MAX_LIMIT = 5000


def get_leaderboard(course_id, limit=DEFAULT_LIMIT, max_limit=MAX_LIMIT):
    """Ranked eligible completions of an incentivized course.

    Ordered by final score, ties broken by who completed first.
    Returns ``(course, entries)``.
    """
    course = db.session.get(Course, course_id)
    if not course:
        raise CourseNotFound()
    if not course.is_incentivized:
        raise NotIncentivized('Leaderboard is only available for incentivized courses')

    limit = int(clamp(limit, 1, max_limit))
    enrollments = (Enrollment.query
                   .filter_by(course_id=course_id, is_completed=True, leaderboard_eligible=True)
                   .order_by(Enrollment.final_score.desc(),
                             Enrollment.completed_at.asc(),
                             Enrollment.id.asc())
                   .limit(limit)
                   .all())

    logger.debug(f"Leaderboard for course {course_id}: {len(enrollments)} entries (limit {limit})")
    return course, [leaderboard_entry(rank, enrollment)
                    for rank, enrollment in enumerate(enrollments, start=1)]


def leaderboard_entry(rank, enrollment):
    user = enrollment.user
    return {
        'rank': rank,
        'walletAddress': user.wallet_address,
        'user': user.to_dict(),
        'finalScore': enrollment.final_score,
        'baseScore': enrollment.base_score,
        'quizScore': enrollment.quiz_score,
        'engagementTimeScore': enrollment.engagement_time_score,
        'actionBoostMultiplier': enrollment.action_boost_multiplier,
        'idMultiplier': enrollment.id_multiplier,
        'completedAt': enrollment.completed_at.isoformat() if enrollment.completed_at else None,
    }
