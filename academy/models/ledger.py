from enum import Enum
from .. import db
from datetime import datetime


class TxType(str, Enum):
    ENROLL = 'ENROLL'
    COMPLETE = 'COMPLETE'
    PROGRESS_UPDATE = 'PROGRESS_UPDATE'


class TxStatus(str, Enum):
    PENDING = 'PENDING'
    SUCCESS = 'SUCCESS'
    FAILED = 'FAILED'


class LedgerTransaction(db.Model):
    """Append-only record of every broadcast ledger transaction"""
    __tablename__ = 'ledger_transactions'

    id = db.Column(db.Integer, primary_key=True)
    tx_hash = db.Column(db.String(80), unique=True, nullable=False)
    type = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=TxStatus.PENDING.value)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    course_id = db.Column(db.Integer, db.ForeignKey('courses.id'), nullable=False)
    gas_used = db.Column(db.String(32))
    error = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    confirmed_at = db.Column(db.DateTime)

    def __repr__(self):
        return f'<LedgerTransaction {self.type} {self.tx_hash} {self.status}>'

    @classmethod
    def latest_for(cls, user_id, course_id, tx_type):
        """Most recent non-failed transaction of a type for a (user, course) pair"""
        return (cls.query
                .filter_by(user_id=user_id, course_id=course_id, type=tx_type.value)
                .filter(cls.status != TxStatus.FAILED.value)
                .order_by(cls.created_at.desc(), cls.id.desc())
                .first())

    def to_dict(self):
        return {
            'txHash': self.tx_hash,
            'type': self.type,
            'status': self.status,
            'userId': self.user_id,
            'courseId': self.course_id,
            'gasUsed': self.gas_used,
            'error': self.error,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'confirmedAt': self.confirmed_at.isoformat() if self.confirmed_at else None,
        }
