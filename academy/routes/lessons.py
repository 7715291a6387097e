from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
import logging

from ..services.progress import ProgressTracker

logger = logging.getLogger(__name__)

lessons_bp = Blueprint('lessons', __name__)


@lessons_bp.route('/<lesson_id>/watch', methods=['POST'])
@login_required
def watch(lesson_id):
    """Record video watch progress for a lesson"""
    body = request.get_json(silent=True) or {}
    try:
        progress_percent = int(body.get('progressPercent'))
    except (TypeError, ValueError):
        return jsonify({'error': 'progressPercent must be an integer'}), 400

    result = ProgressTracker().record_lesson_watch(current_user.id, lesson_id, progress_percent)
    return jsonify(result)
