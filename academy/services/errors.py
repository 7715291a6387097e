"""Named precondition failures for progress and settlement operations.

Each carries a stable ``code`` for API clients and the HTTP status the
blueprints answer with. All of them are recoverable: the caller retries
after satisfying the precondition.
"""


class SettlementError(Exception):
    code = 'settlement_error'
    status_code = 400
    message = 'Operation failed'

    def __init__(self, message=None):
        super().__init__(message or self.message)
        self.message = message or self.message

    def to_dict(self):
        return {'error': self.message, 'code': self.code}


class NotEnrolled(SettlementError):
    code = 'not_enrolled'
    status_code = 403
    message = 'Not enrolled in this course'


class NotIncentivized(SettlementError):
    code = 'not_incentivized'
    message = 'Course is not incentivized'


class RuntimeMissing(SettlementError):
    code = 'runtime_missing'
    message = 'No SCORM runtime found'


class RuntimeTerminated(SettlementError):
    code = 'runtime_terminated'
    status_code = 409
    message = 'SCORM runtime has already been terminated'


class ScormNotComplete(SettlementError):
    code = 'scorm_not_complete'
    message = 'SCORM completion not reached'


class ScoreUnavailable(SettlementError):
    code = 'score_unavailable'
    message = 'SCORM quiz score is unavailable'


class ProofRequired(SettlementError):
    code = 'proof_required'
    message = 'Signature proof is required'


class NotEligible(SettlementError):
    code = 'not_eligible'
    message = 'Course progress has not reached completion'


class NotYetCompleted(SettlementError):
    code = 'not_yet_completed'
    message = 'Course is not completed yet'


class CourseNotFound(SettlementError):
    code = 'course_not_found'
    status_code = 404
    message = 'Course not found'


class LessonNotFound(SettlementError):
    code = 'lesson_not_found'
    status_code = 404
    message = 'Lesson not found'


class UserNotFound(SettlementError):
    code = 'user_not_found'
    status_code = 404
    message = 'User not found'


class InvalidTransition(SettlementError):
    code = 'invalid_transition'
    status_code = 409
    message = 'Invalid enrollment state transition'
