from flask_login import UserMixin
from .. import db, login_manager
from datetime import datetime

@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))

class User(UserMixin, db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True)
    wallet_address = db.Column(db.String(42), unique=True, nullable=False)
    # Cumulative points from finalized incentivized courses
    total_points = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    enrollments = db.relationship('Enrollment', backref='user', lazy=True)

    def get_id(self):
        return str(self.id)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'walletAddress': self.wallet_address,
            'totalPoints': self.total_points,
        }

    def __repr__(self):
        return f'<User {self.username}>'
