from academy.services.progress import ProgressTracker
from academy.services.settlement import SettlementCoordinator

from conftest import INCENTIVIZED_STATE, enroll_locally


def test_requires_login(app, free_course):
    response = app.test_client().post('/courses/1/enroll')
    assert response.status_code == 401
    assert response.get_json()['code'] == 'unauthorized'


def test_enroll(client, free_course, ledger):
    response = client.post('/courses/1/enroll')

    assert response.status_code == 200
    body = response.get_json()
    assert body['enrolled'] is True
    assert body['onChainEnrolled'] is True
    assert body['syncStatus'] == 'synced'
    assert body['txHash'].startswith('0x')


def test_enroll_unknown_course(client):
    response = client.post('/courses/42/enroll')
    assert response.status_code == 404
    assert response.get_json()['code'] == 'course_not_found'


def test_progress_requires_enrollment(client, free_course):
    response = client.get('/courses/1/progress')
    assert response.status_code == 403
    assert response.get_json()['code'] == 'not_enrolled'


def test_lesson_watch_flow(client, user, free_course):
    enroll_locally(user, free_course)

    response = client.post('/lessons/basics-0/watch', json={'progressPercent': 75})
    assert response.status_code == 200
    assert response.get_json()['courseProgress'] == 33

    progress = client.get('/courses/1/progress').get_json()
    assert progress['isIncentivized'] is False
    assert progress['progressPercent'] == 33
    assert progress['state'] == 'IN_PROGRESS'
    assert [(watch['lessonId'], watch['isWatched']) for watch in progress['lessons']] == [('basics-0', True)]
    assert progress['lessons'][0]['watchProgressPercent'] == 75
    assert progress['ledgerTransactions'] == []


def test_lesson_watch_validates_input(client, user, free_course):
    enroll_locally(user, free_course)
    response = client.post('/lessons/basics-0/watch', json={'progressPercent': 'lots'})
    assert response.status_code == 400


def test_complete_free_course_too_early(client, user, free_course):
    enroll_locally(user, free_course)
    response = client.post('/courses/1/complete')
    assert response.status_code == 400
    assert response.get_json()['code'] == 'not_eligible'


def test_scorm_runtime_flow(client, user, incentivized_course):
    enroll_locally(user, incentivized_course)

    response = client.post('/scorm/2/initialize')
    assert response.status_code == 200
    assert response.get_json()['runtime']['terminatedAt'] is None

    response = client.post('/scorm/2/commit', json={'state': {'cmi.location': '3', 'cmi.session_time': 'PT6M'}})
    assert response.get_json()['runtime']['totalTimeSeconds'] == 360

    response = client.post('/scorm/2/terminate', json={'state': INCENTIVIZED_STATE})
    runtime = response.get_json()['runtime']
    assert runtime['terminatedAt'] is not None
    assert runtime['normalizedScore'] == 80
    assert runtime['cmiState']['cmi.location'] == '3'

    response = client.post('/scorm/2/commit', json={'state': {'cmi.location': '4'}})
    assert response.status_code == 409

    state = client.get('/scorm/2/state').get_json()
    assert state['runtime']['cmiState']['cmi.location'] == '3'


def test_scorm_state_before_initialize(client, user, incentivized_course):
    enroll_locally(user, incentivized_course)
    assert client.get('/scorm/2/state').get_json() == {'runtime': None}


def test_signature_without_verifier(client, user, incentivized_course):
    enroll_locally(user, incentivized_course)
    response = client.post('/courses/2/claim/actions/signature',
                           json={'message': 'I completed course 2', 'signature': '0xsig'})
    assert response.status_code == 501


def test_signature_rejected_by_verifier(app, client, user, incentivized_course):
    enroll_locally(user, incentivized_course)
    app.config['PROOF_VERIFIER'] = lambda user, course_id, payload: (False, 'Signer mismatch')

    response = client.post('/courses/2/claim/actions/signature',
                           json={'message': 'I completed course 2', 'signature': '0xsig'})

    assert response.status_code == 400
    assert response.get_json()['error'] == 'Signer mismatch'


def test_signature_requires_payload(app, client, user, incentivized_course):
    enroll_locally(user, incentivized_course)
    app.config['PROOF_VERIFIER'] = lambda user, course_id, payload: (True, None)
    response = client.post('/courses/2/claim/actions/signature', json={'message': 'hi'})
    assert response.status_code == 400


def test_claim_final_flow(app, client, user, incentivized_course, ledger):
    enroll_locally(user, incentivized_course)
    ProgressTracker().record_runtime_commit(user.id, 2, INCENTIVIZED_STATE)
    app.config['PROOF_VERIFIER'] = lambda user, course_id, payload: (True, None)

    response = client.post('/courses/2/claim/final')
    assert response.status_code == 400
    assert response.get_json()['code'] == 'proof_required'

    progress = client.get('/courses/2/progress').get_json()
    assert progress['canClaimFinal'] is False
    assert progress['scormQuizScore'] == 80

    client.post('/courses/2/claim/actions/signature',
                json={'message': 'I completed course 2', 'signature': '0xsig'})
    client.post('/courses/2/claim/actions/dapp-visit')
    assert client.get('/courses/2/progress').get_json()['canClaimFinal'] is True

    response = client.post('/courses/2/claim/final')
    body = response.get_json()
    assert response.status_code == 200
    assert body['finalScore'] == 97
    assert body['completionFlags'] == 15
    assert body['leaderboardEligible'] is True
    assert body['syncStatus'] == 'synced'

    response = client.post('/courses/2/sync')
    assert response.get_json()['alreadySynced'] is True
    assert len(ledger.sent) == 1

    transactions = client.get('/courses/2/progress').get_json()['ledgerTransactions']
    assert [(tx['type'], tx['status'], tx['gasUsed']) for tx in transactions] == [('COMPLETE', 'SUCCESS', '21000')]
    assert transactions[0]['txHash'] == body['txHash']


def test_sync_before_completion(client, user, incentivized_course):
    enroll_locally(user, incentivized_course)
    response = client.post('/courses/2/sync')
    assert response.status_code == 400
    assert response.get_json()['code'] == 'not_yet_completed'


def test_reconcile_command(app, user, free_course, ledger):
    enrollment = enroll_locally(user, free_course)
    enrollment.progress_percent = 100
    ledger.fail_broadcast = True
    SettlementCoordinator().complete_free_course(user.id, 1)
    ledger.fail_broadcast = False

    result = app.test_cli_runner().invoke(args=['reconcile', '--limit', '5'])

    assert result.exit_code == 0
    assert 'Synced 1 of 1 enrollments' in result.output


def test_verify_relayer_command(app):
    result = app.test_cli_runner().invoke(args=['verify-relayer'])
    assert result.exit_code == 0
    assert 'Relayer setup is valid' in result.output
