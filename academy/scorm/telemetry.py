"""Normalize raw SCORM runtime state into canonical completion metrics.

Two vocabularies reach us from course players: SCORM 1.2 (``cmi.core.*``)
and SCORM 2004 (``cmi.completion_status``, ``cmi.success_status``,
``cmi.score.*``). Nothing in here raises on bad input; malformed values
fall back to safe defaults.
"""
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Optional

from .scoring import clamp, round_half_up

SCORM12_COMPLETED = frozenset(['completed', 'passed', 'failed'])
SCORM12_SUCCESS = frozenset(['passed'])
SCORM12_FAILED = frozenset(['failed'])

SCORM2004_COMPLETED = frozenset(['completed'])
SCORM2004_SUCCESS = frozenset(['passed'])
SCORM2004_FAILED = frozenset(['failed'])

_LEGACY_TIME = re.compile(r'^(\d{1,4}):(\d{2}):(\d{2})(?:\.(\d+))?$', re.ASCII)
_ISO_DURATION = re.compile(
    r'^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+(?:\.\d+)?)S)?)?$',
    re.ASCII | re.IGNORECASE,
)


@dataclass(frozen=True)
class Metrics:
    completion_status: str
    success_status: str
    is_completed: bool
    is_successful: bool
    quiz_score: Optional[int]
    raw_score: Optional[float]
    scaled_score: Optional[float]
    total_time_seconds: int


def sanitize_state(raw):
    """Keep only ``cmi.*`` keys with non-empty values, stringified"""
    if not isinstance(raw, Mapping):
        return {}

    output = {}
    for key, value in raw.items():
        if not isinstance(key, str) or not key.startswith('cmi.'):
            continue
        if value is None:
            continue
        if isinstance(value, bool):
            value = 'true' if value else 'false'
        value = value if isinstance(value, str) else str(value)
        if value == '':
            continue
        output[key] = value
    return output


def merge_state(existing, incoming):
    """Last write wins per key; returns a new mapping"""
    merged = dict(existing or {})
    merged.update(incoming or {})
    return merged


def parse_legacy_time(value):
    """SCORM 1.2 ``HHHH:MM:SS.SS`` to whole seconds, 0 when malformed"""
    if not value or not isinstance(value, str):
        return 0
    match = _LEGACY_TIME.match(value.strip())
    if not match:
        return 0
    hours, minutes, seconds = (int(part) for part in match.group(1, 2, 3))
    return hours * 3600 + minutes * 60 + seconds


def parse_iso_duration(value):
    """SCORM 2004 ``P[nD]T[nH][nM][nS]`` to whole seconds, 0 when malformed"""
    if not value or not isinstance(value, str):
        return 0
    match = _ISO_DURATION.match(value.strip())
    if not match:
        return 0
    days, hours, minutes, seconds = match.groups()
    total = (int(days or 0) * 86400
             + int(hours or 0) * 3600
             + int(minutes or 0) * 60
             + float(seconds or 0))
    return int(math.floor(total))


def parse_time(value):
    if not value or not isinstance(value, str):
        return 0
    if value.strip()[:1] in ('P', 'p'):
        return parse_iso_duration(value)
    return parse_legacy_time(value)


def _to_number(value):
    if value is None or value == '':
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def _normalize_raw_score(raw, low, high):
    low = 0 if low is None else low
    high = 100 if high is None else high
    if high <= low:
        return round_half_up(clamp(raw, 0, 100))
    normalized = (raw - low) / (high - low) * 100
    return int(clamp(round_half_up(normalized), 0, 100))


def _derive_completion(state):
    lesson_status = state.get('cmi.core.lesson_status', '').lower()
    completion_2004 = state.get('cmi.completion_status', '').lower()
    success_2004 = state.get('cmi.success_status', '').lower()

    if lesson_status:
        if lesson_status in SCORM12_SUCCESS:
            success = 'passed'
        elif lesson_status in SCORM12_FAILED:
            success = 'failed'
        else:
            success = 'unknown'
        completed = lesson_status in SCORM12_COMPLETED
        return {
            'completion_status': 'completed' if completed else 'incomplete',
            'success_status': success,
            'is_completed': completed,
            'is_successful': lesson_status in SCORM12_SUCCESS,
        }

    # Success or failure implies the attempt was completed
    completed = (completion_2004 in SCORM2004_COMPLETED
                 or success_2004 in SCORM2004_SUCCESS
                 or success_2004 in SCORM2004_FAILED)
    return {
        'completion_status': completion_2004 or ('completed' if completed else 'incomplete'),
        'success_status': success_2004 or 'unknown',
        'is_completed': completed,
        'is_successful': success_2004 in SCORM2004_SUCCESS,
    }


def _derive_score(state, finished):
    if not finished:
        return None, None, None

    raw_12 = _to_number(state.get('cmi.core.score.raw'))
    raw_2004 = _to_number(state.get('cmi.score.raw'))
    scaled = _to_number(state.get('cmi.score.scaled'))

    if raw_12 is not None:
        quiz = _normalize_raw_score(raw_12,
                                    _to_number(state.get('cmi.core.score.min')),
                                    _to_number(state.get('cmi.core.score.max')))
        return quiz, raw_12, None

    if raw_2004 is not None:
        quiz = _normalize_raw_score(raw_2004,
                                    _to_number(state.get('cmi.score.min')),
                                    _to_number(state.get('cmi.score.max')))
        return quiz, raw_2004, scaled

    if scaled is not None:
        return int(clamp(round_half_up(scaled * 100), 0, 100)), None, scaled

    return None, None, None


def _derive_total_time(state, previous_total_seconds):
    total_time = state.get('cmi.total_time') or state.get('cmi.core.total_time')
    session_time = state.get('cmi.session_time') or state.get('cmi.core.session_time')
    best_observed = max(parse_time(total_time), parse_time(session_time))
    return max(previous_total_seconds, best_observed)


def derive_metrics(state, previous_total_seconds=0):
    """Derive completion, score and elapsed time from merged runtime state.

    ``previous_total_seconds`` is the stored elapsed time; the result never
    goes below it, so a player reporting a short session cannot rewind time.
    """
    state = sanitize_state(state)
    try:
        previous = max(0, int(previous_total_seconds or 0))
    except (TypeError, ValueError, OverflowError):
        previous = 0

    completion = _derive_completion(state)
    quiz, raw, scaled = _derive_score(
        state, completion['is_completed'] or completion['is_successful'])

    return Metrics(
        completion_status=completion['completion_status'],
        success_status=completion['success_status'],
        is_completed=completion['is_completed'],
        is_successful=completion['is_successful'],
        quiz_score=quiz,
        raw_score=raw,
        scaled_score=scaled,
        total_time_seconds=_derive_total_time(state, previous),
    )
