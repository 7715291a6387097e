import pytest

from academy.scorm.telemetry import (
    derive_metrics,
    merge_state,
    parse_iso_duration,
    parse_legacy_time,
    parse_time,
    sanitize_state,
)


@pytest.mark.parametrize('value, expected', [
    ('PT1H2M3S', 3723),
    ('P1DT1H', 90000),
    ('PT0.5S', 0),
    ('PT45.9S', 45),
    ('pt10m', 600),
    ('P', 0),
    ('PT1X', 0),
    ('', 0),
    (None, 0),
])
def test_parse_iso_duration(value, expected):
    assert parse_iso_duration(value) == expected


@pytest.mark.parametrize('value, expected', [
    ('0000:01:30.00', 90),
    ('01:00:00', 3600),
    ('12:5:00', 0),
    ('garbage', 0),
])
def test_parse_legacy_time(value, expected):
    assert parse_legacy_time(value) == expected


def test_parse_time_dispatches_on_format():
    assert parse_time('PT2M') == 120
    assert parse_time('00:02:00') == 120
    assert parse_time(42) == 0


def test_sanitize_keeps_only_cmi_keys():
    cleaned = sanitize_state({
        'cmi.core.lesson_status': 'completed',
        'cmi.suspend_data': '',
        'cmi.core.score.raw': 42,
        'cmi.interactions._count': None,
        'cmi.core.exit': True,
        'adl.nav.request': 'continue',
        7: 'x',
    })
    assert cleaned == {
        'cmi.core.lesson_status': 'completed',
        'cmi.core.score.raw': '42',
        'cmi.core.exit': 'true',
    }


def test_sanitize_rejects_non_mappings():
    assert sanitize_state(None) == {}
    assert sanitize_state(['cmi.x']) == {}


def test_merge_state_is_last_write_wins_and_does_not_mutate():
    existing = {'cmi.location': '3', 'cmi.suspend_data': 'a'}
    merged = merge_state(existing, {'cmi.location': '4'})
    assert merged == {'cmi.location': '4', 'cmi.suspend_data': 'a'}
    assert existing['cmi.location'] == '3'


def test_legacy_raw_score_is_normalized_against_range():
    metrics = derive_metrics({
        'cmi.core.lesson_status': 'completed',
        'cmi.core.score.raw': '42',
        'cmi.core.score.min': '0',
        'cmi.core.score.max': '84',
    })
    assert metrics.quiz_score == 50
    assert metrics.is_completed is True
    assert metrics.completion_status == 'completed'
    assert metrics.success_status == 'unknown'


def test_scaled_score_only():
    metrics = derive_metrics({
        'cmi.completion_status': 'completed',
        'cmi.success_status': 'passed',
        'cmi.score.scaled': '0.83',
    })
    assert metrics.quiz_score == 83
    assert metrics.is_successful is True
    assert metrics.scaled_score == pytest.approx(0.83)


def test_legacy_passed_implies_completion():
    metrics = derive_metrics({'cmi.core.lesson_status': 'passed', 'cmi.core.score.raw': '90'})
    assert metrics.is_completed is True
    assert metrics.success_status == 'passed'
    assert metrics.quiz_score == 90


def test_failed_attempt_counts_as_completed():
    metrics = derive_metrics({'cmi.success_status': 'failed', 'cmi.score.raw': '30'})
    assert metrics.is_completed is True
    assert metrics.is_successful is False
    assert metrics.quiz_score == 30


def test_score_withheld_until_finished():
    metrics = derive_metrics({'cmi.completion_status': 'incomplete', 'cmi.score.raw': '70'})
    assert metrics.quiz_score is None
    assert metrics.is_completed is False


def test_legacy_raw_wins_over_newer_fields():
    metrics = derive_metrics({
        'cmi.core.lesson_status': 'completed',
        'cmi.core.score.raw': '60',
        'cmi.score.raw': '95',
        'cmi.score.scaled': '0.99',
    })
    assert metrics.quiz_score == 60


def test_degenerate_range_clamps_raw_score():
    metrics = derive_metrics({
        'cmi.completion_status': 'completed',
        'cmi.score.raw': '140',
        'cmi.score.min': '50',
        'cmi.score.max': '50',
    })
    assert metrics.quiz_score == 100


@pytest.mark.parametrize('raw', ['NaN', 'inf', 'abc'])
def test_non_finite_scores_are_ignored(raw):
    metrics = derive_metrics({'cmi.completion_status': 'completed', 'cmi.score.raw': raw})
    assert metrics.quiz_score is None


def test_elapsed_time_never_decreases():
    metrics = derive_metrics({'cmi.session_time': 'PT5M'}, previous_total_seconds=3600)
    assert metrics.total_time_seconds == 3600

    metrics = derive_metrics({'cmi.total_time': 'PT2H', 'cmi.session_time': 'PT5M'},
                             previous_total_seconds=3600)
    assert metrics.total_time_seconds == 7200


def test_garbage_state_falls_back_to_defaults():
    metrics = derive_metrics({'cmi.total_time': 'soon', 'cmi.core.score.raw': 'high'}, 'x')
    assert metrics.completion_status == 'incomplete'
    assert metrics.success_status == 'unknown'
    assert metrics.quiz_score is None
    assert metrics.total_time_seconds == 0
