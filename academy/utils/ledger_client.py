import itertools
import logging
import time
from collections import namedtuple

import requests
from flask import current_app, has_app_context


logger = logging.getLogger(__name__)

# 4-byte selectors: keccak256 of the canonical signature
SELECTORS = {
    'enroll': 'aac6df7e',               # enroll(uint256,address)
    'completeCourse': '6938ac41',       # completeCourse(uint256,address,uint256,uint256)
    'isUserEnrolled': '43fa8a8b',       # isUserEnrolled(address,uint256)
    'hasCompletedCourse': '4b7c0c42',   # hasCompletedCourse(address,uint256)
    'getUserPoints': 'aeefe31f',        # getUserPoints(address)
    'getRelayer': 'bdc50373',           # getRelayer()
}

# Minimum relayer balance (0.001 ether) before we consider the setup usable
MIN_RELAYER_BALANCE_WEI = 10 ** 15

Receipt = namedtuple('Receipt', ['tx_hash', 'success', 'gas_used', 'block_number'])


class LedgerError(Exception):
    """Broadcast, RPC or receipt failure talking to the ledger"""


class LedgerNotConfigured(LedgerError):
    """Contract or relayer address missing from configuration"""


class LedgerTimeout(LedgerError):
    """No receipt within the bounded wait; the transaction may still land"""

    def __init__(self, tx_hash, waited):
        super().__init__(f"No receipt for {tx_hash} after {waited:.1f}s")
        self.tx_hash = tx_hash
        self.waited = waited


def encode_uint256(value):
    value = int(value)
    if value < 0 or value >= 2 ** 256:
        raise ValueError(f"uint256 out of range: {value}")
    return format(value, '064x')


def encode_address(address):
    if not isinstance(address, str) or not address.startswith('0x') or len(address) != 42:
        raise ValueError(f"Invalid address: {address!r}")
    int(address[2:], 16)
    return address[2:].lower().rjust(64, '0')


def encode_call(method, *words):
    """Build calldata for a contract method taking only static arguments"""
    return '0x' + SELECTORS[method] + ''.join(words)


def decode_uint(result):
    if not result or result == '0x':
        return 0
    return int(result, 16)


def decode_address(result):
    if not result or result == '0x':
        return None
    return '0x' + result[2:].rjust(64, '0')[-40:]


class LedgerClient:
    """JSON-RPC wrapper over the course contract.

    Transactions are sent with ``eth_sendTransaction`` from the relayer
    account; the RPC endpoint's managed signer holds the relayer key.
    """

    def __init__(self, rpc_url=None, contract_address=None, relayer_address=None,
                 chain_id=None, request_timeout=None, session=None):
        # Each argument falls back to the app config on its own
        config = current_app.config if has_app_context() else {}

        def setting(value, key, default=None):
            return value if value is not None else config.get(key, default)

        self.rpc_url = setting(rpc_url, 'LEDGER_RPC_URL')
        self.contract_address = (setting(contract_address, 'LEDGER_CONTRACT_ADDRESS') or '').lower()
        self.relayer_address = (setting(relayer_address, 'LEDGER_RELAYER_ADDRESS') or '').lower()
        self.chain_id = setting(chain_id, 'LEDGER_CHAIN_ID', 8453)
        self.request_timeout = setting(request_timeout, 'LEDGER_REQUEST_TIMEOUT', 10)
        self.session = session or requests.Session()
        self._ids = itertools.count(1)

        logger.info(f"Initialized LedgerClient with rpc_url: {self.rpc_url}")
        logger.info(f"Contract address set: {self.contract_address.startswith('0x')}")
        logger.info(f"Relayer address set: {bool(self.relayer_address)}")

    @property
    def is_configured(self):
        return self.contract_address.startswith('0x') and bool(self.relayer_address)

    def _assert_configured(self):
        if not self.is_configured:
            raise LedgerNotConfigured('Ledger contract or relayer is not configured')

    def _rpc(self, method, params):
        payload = {
            'jsonrpc': '2.0',
            'id': next(self._ids),
            'method': method,
            'params': params,
        }
        try:
            response = self.session.post(
                self.rpc_url,
                json=payload,
                headers={'Content-Type': 'application/json', 'Accept': 'application/json'},
                timeout=self.request_timeout
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"RPC {method} request error: {str(e)}")
            raise LedgerError(f"RPC {method} failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"RPC {method} failed. Status: {response.status_code}, Body: {response.text[:500]}")
            raise LedgerError(f"RPC {method} returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise LedgerError(f"RPC {method} returned invalid JSON") from e

        if body.get('error'):
            error = body['error']
            message = error.get('message') if isinstance(error, dict) else str(error)
            logger.error(f"RPC {method} error: {message}")
            raise LedgerError(message or f"RPC {method} error")

        return body.get('result')

    def _call(self, data):
        self._assert_configured()
        return self._rpc('eth_call', [{'to': self.contract_address, 'data': data}, 'latest'])

    def _send(self, data):
        self._assert_configured()
        tx = {
            'from': self.relayer_address,
            'to': self.contract_address,
            'data': data,
            'chainId': hex(self.chain_id),
        }
        tx_hash = self._rpc('eth_sendTransaction', [tx])
        if not tx_hash:
            raise LedgerError('eth_sendTransaction returned no transaction hash')
        return tx_hash

    # Views

    def is_user_enrolled(self, user_address, course_id):
        data = encode_call('isUserEnrolled', encode_address(user_address), encode_uint256(course_id))
        return decode_uint(self._call(data)) != 0

    def has_completed_course(self, user_address, course_id):
        data = encode_call('hasCompletedCourse', encode_address(user_address), encode_uint256(course_id))
        return decode_uint(self._call(data)) != 0

    def get_user_points(self, user_address):
        return decode_uint(self._call(encode_call('getUserPoints', encode_address(user_address))))

    def get_relayer(self):
        return decode_address(self._call(encode_call('getRelayer')))

    # Transactions

    def enroll(self, course_id, user_address):
        data = encode_call('enroll', encode_uint256(course_id), encode_address(user_address))
        tx_hash = self._send(data)
        logger.info(f"Broadcast enroll for {user_address} in course {course_id}: {tx_hash}")
        return tx_hash

    def complete_course(self, course_id, user_address, score, flags):
        if not 0 <= int(score) <= 100:
            raise ValueError(f"Score out of range: {score}")
        data = encode_call('completeCourse',
                           encode_uint256(course_id),
                           encode_address(user_address),
                           encode_uint256(score),
                           encode_uint256(flags))
        tx_hash = self._send(data)
        logger.info(f"Broadcast completeCourse for {user_address} in course {course_id} "
                    f"(score={score}, flags={flags}): {tx_hash}")
        return tx_hash

    # Receipts

    def get_receipt(self, tx_hash):
        """Receipt for a mined transaction, None while it is still pending"""
        result = self._rpc('eth_getTransactionReceipt', [tx_hash])
        if not result:
            return None
        return Receipt(
            tx_hash=tx_hash,
            success=decode_uint(result.get('status')) == 1,
            gas_used=str(decode_uint(result.get('gasUsed'))),
            block_number=decode_uint(result.get('blockNumber')),
        )

    def wait_for_receipt(self, tx_hash, timeout=60, poll_interval=2):
        """Poll for a receipt; raise LedgerTimeout once ``timeout`` seconds pass"""
        started = time.monotonic()
        while True:
            receipt = self.get_receipt(tx_hash)
            if receipt is not None:
                return receipt
            waited = time.monotonic() - started
            if waited >= timeout:
                logger.warning(f"Timed out waiting for receipt of {tx_hash}")
                raise LedgerTimeout(tx_hash, waited)
            time.sleep(min(poll_interval, max(timeout - waited, 0)))

    def get_balance(self, address):
        return decode_uint(self._rpc('eth_getBalance', [address, 'latest']))

    def verify_relayer_setup(self):
        """Check relayer address matches the contract and has gas money"""
        try:
            if not self.is_configured:
                return False, 'Relayer address or contract is not configured'

            contract_relayer = self.get_relayer()
            if not contract_relayer:
                return False, 'Contract relayer not available'

            if contract_relayer.lower() != self.relayer_address:
                return False, f"Relayer {self.relayer_address} does not match contract relayer {contract_relayer}"

            if self.get_balance(self.relayer_address) < MIN_RELAYER_BALANCE_WEI:
                return False, 'Relayer balance is too low'

            return True, None
        except LedgerError as e:
            return False, str(e)
