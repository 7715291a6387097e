from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
import logging

from ..services.progress import ProgressTracker

logger = logging.getLogger(__name__)

scorm_bp = Blueprint('scorm', __name__)


def _state_from_request():
    body = request.get_json(silent=True) or {}
    return body.get('state') if isinstance(body, dict) else None


@scorm_bp.route('/<int:course_id>/initialize', methods=['POST'])
@login_required
def initialize(course_id):
    """Called by the player shim on LMSInitialize / Initialize"""
    runtime = ProgressTracker().initialize_runtime(current_user.id, course_id)
    return jsonify({'initialized': True, 'runtime': runtime.to_dict()})


@scorm_bp.route('/<int:course_id>/commit', methods=['POST'])
@login_required
def commit(course_id):
    """Merge a runtime commit into the stored state"""
    runtime = ProgressTracker().record_runtime_commit(current_user.id, course_id, _state_from_request())
    return jsonify({'committed': True, 'runtime': runtime.to_dict()})


@scorm_bp.route('/<int:course_id>/terminate', methods=['POST'])
@login_required
def terminate(course_id):
    runtime = ProgressTracker().terminate_runtime(current_user.id, course_id, _state_from_request())
    return jsonify({'terminated': True, 'runtime': runtime.to_dict()})


@scorm_bp.route('/<int:course_id>/state')
@login_required
def state(course_id):
    """Stored runtime state, used by the player to resume"""
    runtime = ProgressTracker().get_runtime(current_user.id, course_id)
    return jsonify({'runtime': runtime.to_dict() if runtime else None})
