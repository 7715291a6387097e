import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    # Flask Configuration
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev')
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', 'sqlite:///academy.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Debug Configuration
    DEBUG = os.getenv('FLASK_ENV') == 'development'

    # Ledger Configuration
    LEDGER_RPC_URL = os.getenv('LEDGER_RPC_URL', 'https://mainnet.base.org')
    LEDGER_CHAIN_ID = int(os.getenv('LEDGER_CHAIN_ID', '8453'))
    LEDGER_CONTRACT_ADDRESS = os.getenv('LEDGER_CONTRACT_ADDRESS', '')
    LEDGER_RELAYER_ADDRESS = os.getenv('LEDGER_RELAYER_ADDRESS', '')

    # Seconds to wait for a receipt before reporting the sync as pending
    LEDGER_RECEIPT_TIMEOUT = float(os.getenv('LEDGER_RECEIPT_TIMEOUT', '60'))
    LEDGER_POLL_INTERVAL = float(os.getenv('LEDGER_POLL_INTERVAL', '2'))
    LEDGER_REQUEST_TIMEOUT = float(os.getenv('LEDGER_REQUEST_TIMEOUT', '10'))

    # A PENDING transaction without a receipt after this many seconds is
    # treated as dropped and broadcast again
    LEDGER_PENDING_STALE_AFTER = float(os.getenv('LEDGER_PENDING_STALE_AFTER', '600'))

    # Scoring Configuration
    # Callable (wallet_address) -> float, None means a constant 1
    IDENTITY_MULTIPLIER = None

    # Callable (user, course_id, payload) -> (valid, error) for claim signatures
    PROOF_VERIFIER = None

    # Zero-argument callable returning a ledger client, None means LedgerClient
    LEDGER_CLIENT_FACTORY = None

    # Logging Configuration
    LOGGING = {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'standard': {
                'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
            },
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'formatter': 'standard'
            }
        },
        'root': {
            'level': os.getenv('LOG_LEVEL', 'INFO'),
            'handlers': ['console']
        }
    }


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    LEDGER_CONTRACT_ADDRESS = '0x' + '11' * 20
    LEDGER_RELAYER_ADDRESS = '0x' + '22' * 20
    LEDGER_RECEIPT_TIMEOUT = 0.05
    LEDGER_POLL_INTERVAL = 0.01
