from academy import create_app, db
from academy.models.user import User
from academy.models.course import Course, Lesson, LessonWatch
from academy.models.enrollment import Enrollment
from academy.models.runtime import RuntimeState
from academy.models.ledger import LedgerTransaction

app = create_app()

with app.app_context():
    # Drop all tables
    db.drop_all()

    # Create all tables
    db.create_all()

    print("Database initialized successfully!")
