import logging
from collections import namedtuple
from datetime import datetime, timedelta

from flask import current_app

from .. import db
from ..models.ledger import LedgerTransaction, TxStatus, TxType
from ..utils.ledger_client import LedgerClient, LedgerError, LedgerTimeout

logger = logging.getLogger(__name__)

ALREADY_ENROLLED = 'already-enrolled'
ALREADY_COMPLETED = 'already-completed'

SYNCED = 'synced'
PENDING = 'pending'
FAILED = 'failed'

Submission = namedtuple('Submission', ['status', 'tx_hash', 'error'])

# Error recorded on a PENDING row whose transaction never got a receipt
DROPPED = 'dropped'


def build_ledger_client():
    factory = current_app.config.get('LEDGER_CLIENT_FACTORY')
    if factory is not None:
        return factory()
    return LedgerClient()


class Relayer:
    """Submits enrollment/completion facts to the ledger exactly once.

    Every submission first asks the contract whether the target state is
    already reached, then reuses an in-flight transaction before ever
    broadcasting a new one. Ledger failures come back as a Submission with
    status ``failed`` or ``pending``; they are never raised.
    """

    def __init__(self, client=None, receipt_timeout=None, poll_interval=None, stale_after=None):
        self.client = client or build_ledger_client()
        self.receipt_timeout = (receipt_timeout if receipt_timeout is not None
                                else current_app.config['LEDGER_RECEIPT_TIMEOUT'])
        self.poll_interval = (poll_interval if poll_interval is not None
                              else current_app.config['LEDGER_POLL_INTERVAL'])
        self.stale_after = (stale_after if stale_after is not None
                            else current_app.config['LEDGER_PENDING_STALE_AFTER'])

    def enroll_user(self, user, course_id):
        return self._submit(
            user, course_id, TxType.ENROLL,
            already_done=lambda: self.client.is_user_enrolled(user.wallet_address, course_id),
            broadcast=lambda: self.client.enroll(course_id, user.wallet_address),
            sentinel=ALREADY_ENROLLED,
        )

    def complete_course(self, user, course_id, score, flags):
        return self._submit(
            user, course_id, TxType.COMPLETE,
            already_done=lambda: self.client.has_completed_course(user.wallet_address, course_id),
            broadcast=lambda: self.client.complete_course(course_id, user.wallet_address, score, flags),
            sentinel=ALREADY_COMPLETED,
        )

    def _submit(self, user, course_id, tx_type, already_done, broadcast, sentinel):
        label = f"{tx_type.value} user={user.id} course={course_id}"

        try:
            reached = already_done()
        except LedgerError as e:
            logger.error(f"Pre-check failed for {label}: {str(e)}")
            return Submission(FAILED, None, str(e))

        prior = LedgerTransaction.latest_for(user.id, course_id, tx_type)

        if reached:
            # Crash between broadcast and local update: reuse what we recorded
            if prior is not None and prior.status == TxStatus.PENDING.value:
                self._confirm(prior)
            if prior is not None and prior.status != TxStatus.FAILED.value:
                logger.info(f"Ledger already reflects {label}, reusing {prior.tx_hash}")
                return Submission(SYNCED, prior.tx_hash, None)
            logger.info(f"Ledger already reflects {label}, no local record")
            return Submission(SYNCED, sentinel, None)

        if prior is not None and prior.status == TxStatus.PENDING.value:
            if not self._is_stale(prior):
                logger.info(f"Found in-flight transaction {prior.tx_hash} for {label}")
                return self._await(prior, label)

            self._confirm(prior)
            if prior.status == TxStatus.SUCCESS.value:
                return Submission(SYNCED, prior.tx_hash, None)
            if prior.status == TxStatus.PENDING.value:
                self._mark_dropped(prior)
            logger.warning(f"Transaction {prior.tx_hash} for {label} ended {prior.status}, broadcasting again")

        try:
            tx_hash = broadcast()
        except (LedgerError, ValueError) as e:
            logger.error(f"Broadcast failed for {label}: {str(e)}")
            return Submission(FAILED, None, str(e))

        record = LedgerTransaction(
            tx_hash=tx_hash,
            type=tx_type.value,
            status=TxStatus.PENDING.value,
            user_id=user.id,
            course_id=course_id,
        )
        db.session.add(record)
        db.session.commit()

        return self._await(record, label)

    def _await(self, record, label):
        try:
            receipt = self.client.wait_for_receipt(
                record.tx_hash,
                timeout=self.receipt_timeout,
                poll_interval=self.poll_interval
            )
        except LedgerTimeout as e:
            logger.warning(f"Sync pending for {label}: {str(e)}")
            return Submission(PENDING, record.tx_hash, str(e))
        except LedgerError as e:
            logger.error(f"Receipt polling failed for {label}: {str(e)}")
            return Submission(PENDING, record.tx_hash, str(e))

        self._apply_receipt(record, receipt)
        if receipt.success:
            logger.info(f"Confirmed {label} in {record.tx_hash} (gas {receipt.gas_used})")
            return Submission(SYNCED, record.tx_hash, None)

        logger.error(f"Transaction {record.tx_hash} reverted for {label}")
        return Submission(FAILED, record.tx_hash, record.error)

    def _confirm(self, record):
        """Non-blocking receipt check for a PENDING record"""
        try:
            receipt = self.client.get_receipt(record.tx_hash)
        except LedgerError as e:
            logger.warning(f"Could not check receipt for {record.tx_hash}: {str(e)}")
            return
        if receipt is not None:
            self._apply_receipt(record, receipt)

    def _is_stale(self, record):
        if record.created_at is None:
            return False
        return datetime.utcnow() - record.created_at >= timedelta(seconds=self.stale_after)

    def _mark_dropped(self, record):
        # The row is closed out; the rebroadcast gets a row of its own
        record.status = TxStatus.FAILED.value
        record.error = DROPPED
        db.session.commit()
        logger.warning(f"Marked transaction {record.tx_hash} as dropped")

    def _apply_receipt(self, record, receipt):
        # Each row moves out of PENDING exactly once
        if record.status != TxStatus.PENDING.value:
            return
        record.status = TxStatus.SUCCESS.value if receipt.success else TxStatus.FAILED.value
        record.gas_used = receipt.gas_used
        record.confirmed_at = datetime.utcnow()
        if not receipt.success:
            record.error = 'Transaction reverted'
        db.session.commit()
