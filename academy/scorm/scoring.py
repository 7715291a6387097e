"""Score engine for incentivized course completion.

Pure functions only. Every score returned here is an integer in [0, 100];
rounding is half-up so that scores match what the course player and the
contract owner compute on their side.
"""
import math
import re
from enum import IntFlag

QUIZ_WEIGHT = 0.7
ENGAGEMENT_WEIGHT = 0.3
PROOF_SIGNED_BOOST = 1.10
DAPP_VISIT_BOOST = 1.03


class CompletionFlag(IntFlag):
    PROOF_SIGNED = 1
    DAPP_VISIT = 2
    SCORM_COMPLETED = 4
    INCENTIVIZED = 8


def round_half_up(value):
    return int(math.floor(value + 0.5))


def clamp(value, low, high):
    return max(low, min(high, value))


def engagement_time_score(elapsed_seconds, course_duration_seconds):
    """Share of the nominal course duration actually spent, as 0-100"""
    if not course_duration_seconds or course_duration_seconds <= 0:
        return 100 if elapsed_seconds and elapsed_seconds > 0 else 0

    ratio = clamp(elapsed_seconds / course_duration_seconds, 0, 1)
    return round_half_up(ratio * 100)


def base_score(quiz_score, engagement_score):
    value = QUIZ_WEIGHT * quiz_score + ENGAGEMENT_WEIGHT * engagement_score
    return round_half_up(clamp(value, 0, 100))


def action_boost_multiplier(proof_signed, dapp_visit):
    multiplier = 1.0
    if proof_signed:
        multiplier *= PROOF_SIGNED_BOOST
    if dapp_visit:
        multiplier *= DAPP_VISIT_BOOST
    return multiplier


def final_score(base, action_multiplier, identity_multiplier=1):
    value = base * action_multiplier * identity_multiplier
    return round_half_up(clamp(value, 0, 100))


def completion_flags(proof_signed, dapp_visit, scorm_completed):
    flags = CompletionFlag.INCENTIVIZED
    if proof_signed:
        flags |= CompletionFlag.PROOF_SIGNED
    if dapp_visit:
        flags |= CompletionFlag.DAPP_VISIT
    if scorm_completed:
        flags |= CompletionFlag.SCORM_COMPLETED
    return int(flags)


def is_leaderboard_eligible(proof_signed, scorm_completed):
    # Both are required; a high score alone does not qualify
    return bool(proof_signed and scorm_completed)


def is_scorm_completed(completion_status, success_status):
    completion = (completion_status or '').lower()
    success = (success_status or '').lower()
    return completion == 'completed' or success in ('passed', 'failed')


_DURATION_TOKEN = re.compile(
    r'(\d+(?:\.\d+)?)\s*(hours|hour|hr|h|minutes|minute|min|m|seconds|second|sec|s)',
    re.ASCII,
)


def parse_course_duration(duration):
    """Parse a human duration such as "1h 30m" or "45 minutes" into seconds.

    Returns None when nothing usable is found.
    """
    if not duration:
        return None

    total_seconds = 0
    matched = False
    for value, unit in _DURATION_TOKEN.findall(duration.lower()):
        matched = True
        amount = float(value)
        if unit.startswith('h'):
            total_seconds += round_half_up(amount * 3600)
        elif unit.startswith('m'):
            total_seconds += round_half_up(amount * 60)
        else:
            total_seconds += round_half_up(amount)

    if not matched or total_seconds <= 0:
        return None
    return total_seconds


def identity_multiplier(wallet_address, provider=None):
    """Identity/reputation multiplier; constant 1 until a provider is configured"""
    if provider is None:
        return 1.0
    return float(provider(wallet_address))
