from .. import db
from datetime import datetime

class Course(db.Model):
    """Course model; the primary key doubles as the on-chain course id"""
    __tablename__ = 'courses'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    duration = db.Column(db.String(64))  # e.g. "1h 30m"
    is_incentivized = db.Column(db.Boolean, nullable=False, default=False)
    is_published = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    lessons = db.relationship('Lesson', backref='course', lazy=True,
                              order_by='Lesson.order_index')
    enrollments = db.relationship('Enrollment', backref='course', lazy=True)

    def __repr__(self):
        return f'<Course {self.title}>'

    def to_dict(self):
        """Convert course to dictionary"""
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'duration': self.duration,
            'isIncentivized': self.is_incentivized,
            'totalLessons': len(self.lessons),
        }


class Lesson(db.Model):
    __tablename__ = 'lessons'

    id = db.Column(db.String(64), primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey('courses.id'), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    order_index = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<Lesson {self.course_id}/{self.order_index} {self.title}>'


class LessonWatch(db.Model):
    """Per user+lesson watch progress for free courses"""
    __tablename__ = 'lesson_watches'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'lesson_id', name='uq_lesson_watches_user_lesson'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    lesson_id = db.Column(db.String(64), db.ForeignKey('lessons.id'), nullable=False)
    watch_progress_percent = db.Column(db.Integer, nullable=False, default=0)
    is_watched = db.Column(db.Boolean, nullable=False, default=False)
    watched_at = db.Column(db.DateTime)
    last_watched_at = db.Column(db.DateTime, default=datetime.utcnow)

    lesson = db.relationship('Lesson')

    def to_dict(self):
        return {
            'lessonId': self.lesson_id,
            'watchProgressPercent': self.watch_progress_percent,
            'isWatched': self.is_watched,
            'watchedAt': self.watched_at.isoformat() if self.watched_at else None,
        }
