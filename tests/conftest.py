import itertools

import pytest
from flask_login import FlaskLoginClient

from academy import create_app, db
from academy.config import TestConfig
from academy.models.course import Course, Lesson
from academy.models.enrollment import Enrollment
from academy.models.user import User
from academy.utils.ledger_client import LedgerError, LedgerTimeout, Receipt


WALLET = '0x' + 'ab' * 20

INCENTIVIZED_STATE = {
    'cmi.completion_status': 'completed',
    'cmi.success_status': 'passed',
    'cmi.score.raw': '80',
    'cmi.total_time': 'PT1H',
}


class FakeLedgerClient:
    """In-memory stand-in for LedgerClient that records every broadcast."""

    def __init__(self):
        self.enrolled = set()
        self.completed = set()
        self.sent = []
        self.receipts = {}
        self.pending = {}
        self.mine = True
        self.revert = False
        self.fail_broadcast = False
        self.fail_precheck = False
        self._hashes = itertools.count(1)

    def is_user_enrolled(self, user_address, course_id):
        if self.fail_precheck:
            raise LedgerError('rpc unavailable')
        return (user_address.lower(), course_id) in self.enrolled

    def has_completed_course(self, user_address, course_id):
        if self.fail_precheck:
            raise LedgerError('rpc unavailable')
        return (user_address.lower(), course_id) in self.completed

    def enroll(self, course_id, user_address):
        return self._broadcast(('enroll', course_id, user_address), self.enrolled,
                               (user_address.lower(), course_id))

    def complete_course(self, course_id, user_address, score, flags):
        if not 0 <= int(score) <= 100:
            raise ValueError(f"Score out of range: {score}")
        return self._broadcast(('completeCourse', course_id, user_address, score, flags),
                               self.completed, (user_address.lower(), course_id))

    def _broadcast(self, call, target, key):
        if self.fail_broadcast:
            raise LedgerError('insufficient funds for gas')
        self.sent.append(call)
        tx_hash = '0x' + format(next(self._hashes), '064x')
        if self.mine:
            self._mine(tx_hash, target, key)
        else:
            self.pending[tx_hash] = (target, key)
        return tx_hash

    def _mine(self, tx_hash, target, key):
        if self.revert:
            self.receipts[tx_hash] = Receipt(tx_hash, False, '30000', 10)
            return
        target.add(key)
        self.receipts[tx_hash] = Receipt(tx_hash, True, '21000', 10)

    def mine_pending(self):
        for tx_hash, (target, key) in list(self.pending.items()):
            self._mine(tx_hash, target, key)
        self.pending.clear()

    def get_receipt(self, tx_hash):
        return self.receipts.get(tx_hash)

    def wait_for_receipt(self, tx_hash, timeout=60, poll_interval=2):
        receipt = self.get_receipt(tx_hash)
        if receipt is None:
            raise LedgerTimeout(tx_hash, timeout)
        return receipt

    def verify_relayer_setup(self):
        return True, None


@pytest.fixture
def ledger():
    return FakeLedgerClient()


@pytest.fixture
def app(ledger):
    app = create_app(TestConfig)
    app.config['LEDGER_CLIENT_FACTORY'] = lambda: ledger
    app.test_client_class = FlaskLoginClient

    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def user(app):
    user = User(username='learner', email='learner@example.com', wallet_address=WALLET)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def free_course(app):
    course = Course(id=1, title='Wallet Basics', duration='30m', is_incentivized=False)
    db.session.add(course)
    for index in range(3):
        db.session.add(Lesson(id=f'basics-{index}', course_id=1,
                              title=f'Lesson {index}', order_index=index))
    db.session.commit()
    return course


@pytest.fixture
def incentivized_course(app):
    course = Course(id=2, title='DeFi Safety', duration='1h', is_incentivized=True)
    db.session.add(course)
    db.session.commit()
    return course


def enroll_locally(user, course):
    enrollment = Enrollment(user_id=user.id, course_id=course.id)
    db.session.add(enrollment)
    db.session.commit()
    return enrollment


@pytest.fixture
def client(app, user):
    return app.test_client(user=user)
