from flask import jsonify
import logging

from .. import login_manager
from ..services.errors import SettlementError

logger = logging.getLogger(__name__)


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({'error': 'Authentication required', 'code': 'unauthorized'}), 401


def register_error_handlers(app):
    @app.errorhandler(SettlementError)
    def handle_settlement_error(e):
        logger.info(f"{e.code}: {e.message}")
        return jsonify(e.to_dict()), e.status_code
