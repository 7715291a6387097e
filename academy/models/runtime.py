from .. import db
from datetime import datetime

class RuntimeState(db.Model):
    """Merged SCORM runtime state for one incentivized enrollment"""
    __tablename__ = 'runtime_states'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'course_id', name='uq_runtime_states_user_course'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    course_id = db.Column(db.Integer, db.ForeignKey('courses.id'), nullable=False)

    # Replaced wholesale on every commit, never mutated in place
    cmi_state = db.Column(db.JSON, nullable=False, default=dict)
    completion_status = db.Column(db.String(32), default='unknown')
    success_status = db.Column(db.String(32), default='unknown')
    raw_score = db.Column(db.Float)
    scaled_score = db.Column(db.Float)
    normalized_score = db.Column(db.Integer)
    total_time_seconds = db.Column(db.Integer, nullable=False, default=0)

    initialized_at = db.Column(db.DateTime, default=datetime.utcnow)
    last_commit_at = db.Column(db.DateTime)
    terminated_at = db.Column(db.DateTime)

    def __repr__(self):
        return f'<RuntimeState {self.user_id} - {self.course_id}>'

    @property
    def is_terminated(self):
        return self.terminated_at is not None

    def to_dict(self):
        return {
            'userId': self.user_id,
            'courseId': self.course_id,
            'cmiState': dict(self.cmi_state or {}),
            'completionStatus': self.completion_status,
            'successStatus': self.success_status,
            'rawScore': self.raw_score,
            'scaledScore': self.scaled_score,
            'normalizedScore': self.normalized_score,
            'totalTimeSeconds': self.total_time_seconds,
            'initializedAt': self.initialized_at.isoformat() if self.initialized_at else None,
            'lastCommitAt': self.last_commit_at.isoformat() if self.last_commit_at else None,
            'terminatedAt': self.terminated_at.isoformat() if self.terminated_at else None,
        }
