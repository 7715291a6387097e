from datetime import datetime, timedelta

import pytest

from academy import db
from academy.models.enrollment import Enrollment
from academy.models.user import User
from academy.services.errors import CourseNotFound, NotIncentivized
from academy.services.leaderboard import get_leaderboard

STARTED = datetime(2026, 3, 1, 12, 0, 0)


def add_completion(course, name, wallet_byte, final_score, minutes, eligible=True, completed=True):
    user = User(username=name, wallet_address='0x' + wallet_byte * 20)
    db.session.add(user)
    db.session.flush()
    db.session.add(Enrollment(
        user_id=user.id,
        course_id=course.id,
        is_completed=completed,
        completed_at=STARTED + timedelta(minutes=minutes) if completed else None,
        quiz_score=80,
        engagement_time_score=100,
        base_score=86,
        action_boost_multiplier=1.1,
        id_multiplier=1.0,
        final_score=final_score,
        leaderboard_eligible=eligible,
    ))
    db.session.commit()
    return user


@pytest.fixture
def ranked(incentivized_course):
    return {
        'late': add_completion(incentivized_course, 'late', 'a1', 90, minutes=20),
        'top': add_completion(incentivized_course, 'top', 'b2', 95, minutes=30),
        'early': add_completion(incentivized_course, 'early', 'c3', 90, minutes=10),
        'unsigned': add_completion(incentivized_course, 'unsigned', 'd4', 99, minutes=5, eligible=False),
        'running': add_completion(incentivized_course, 'running', 'e5', 100, minutes=0, completed=False),
    }


def test_ranks_by_score_then_completion_time(ranked, incentivized_course):
    course, entries = get_leaderboard(incentivized_course.id)

    assert course.id == incentivized_course.id
    assert [entry['user']['username'] for entry in entries] == ['top', 'early', 'late']
    assert [entry['rank'] for entry in entries] == [1, 2, 3]
    assert entries[0]['walletAddress'] == ranked['top'].wallet_address
    assert entries[0]['finalScore'] == 95
    assert entries[1]['completedAt'] == '2026-03-01T12:10:00'


@pytest.mark.parametrize('limit, expected', [(1, 1), (0, 1), (-4, 1), (1000, 3)])
def test_limit_is_clamped(ranked, incentivized_course, limit, expected):
    _, entries = get_leaderboard(incentivized_course.id, limit)
    assert len(entries) == expected


def test_unknown_or_free_course(free_course):
    with pytest.raises(CourseNotFound):
        get_leaderboard(99)
    with pytest.raises(NotIncentivized):
        get_leaderboard(free_course.id)


def test_leaderboard_endpoint_is_public(app, ranked):
    response = app.test_client().get('/courses/2/leaderboard?limit=2')

    assert response.status_code == 200
    body = response.get_json()
    assert body['course']['isIncentivized'] is True
    assert [entry['rank'] for entry in body['entries']] == [1, 2]
    assert body['entries'][0]['baseScore'] == 86
    assert body['entries'][0]['actionBoostMultiplier'] == pytest.approx(1.1)


def test_leaderboard_endpoint_errors(app, free_course):
    client = app.test_client()
    assert client.get('/courses/1/leaderboard').status_code == 400
    assert client.get('/courses/1/leaderboard').get_json()['code'] == 'not_incentivized'
    assert client.get('/courses/77/leaderboard').status_code == 404


def test_export_command_writes_csv(app, ranked):
    result = app.test_cli_runner().invoke(args=['export-leaderboard', '2', '--top', '2'])

    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert lines[0] == 'rank,wallet_address,final_score,base_score,quiz_score,engagement_time_score,completed_at'
    assert lines[1] == f"1,{ranked['top'].wallet_address},95,86,80,100,2026-03-01T12:30:00"
    assert len(lines) == 3


def test_export_command_unknown_course(app):
    result = app.test_cli_runner().invoke(args=['export-leaderboard', '99'])
    assert result.exit_code != 0
    assert 'Course not found' in result.output
