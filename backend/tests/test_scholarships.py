import pytest

from scholarfund import schemas, services
from scholarfund.errors import ValidationError

from conftest import scholarship_body


def test_submit_and_fetch_scholarship(client, make_student, make_alumni):
    student_id, s_headers = make_student()
    _, a_headers = make_alumni()

    r = client.post('/scholarship', json=scholarship_body(), headers=s_headers)
    assert r.status_code == 200
    assert r.json()['success'] is True
    assert r.json()['scholarship']['studentId'] == student_id

    got = client.get(f'/scholarship/{student_id}', headers=a_headers)
    assert got.status_code == 200
    body = got.json()
    req = body['request']
    assert req['amountRequired'] == 10000
    assert req['totalReceived'] == 0
    assert req['remaining'] == 10000
    assert req['academicMetrics']['overallAverage'] == pytest.approx(8.2)
    assert [p['semester'] for p in req['academicMetrics']['periodAverages']] == [1, 2]
    assert body['profile']['name'] == 'Asha Rao'


def test_missing_scholarship_is_not_found(client, make_student, make_alumni):
    student_id, _ = make_student()
    _, a_headers = make_alumni()
    r = client.get(f'/scholarship/{student_id}', headers=a_headers)
    assert r.status_code == 404
    assert r.json() == {'error': 'Scholarship not found'}


@pytest.mark.parametrize('body, fragment', [
    (scholarship_body(amount=0), 'amountRequired'),
    (scholarship_body(amount=-50), 'amountRequired'),
    (scholarship_body(overall=10.5), 'overallAverage'),
    (scholarship_body(periods=((1, 11.0),)), 'gpa'),
    (scholarship_body(periods=((1, 8.0), (1, 7.0))), 'more than once'),
    (scholarship_body(periods=((5, 8.0),)), 'not a completed semester'),
    (scholarship_body(periods=((0, 8.0),)), 'start at 1'),
])
def test_submit_validation(client, make_student, store, body, fragment):
    student_id, headers = make_student()
    r = client.post('/scholarship', json=body, headers=headers)
    assert r.status_code == 400
    assert fragment in r.json()['error']
    assert store.get(f'scholarship:{student_id}') is None


def test_submit_rejects_overlong_reason(client, make_student):
    _, headers = make_student()
    body = scholarship_body()
    body['reason'] = 'x' * 5000
    r = client.post('/scholarship', json=body, headers=headers)
    assert r.status_code == 400


def test_submit_shape_error_is_400(client, make_student):
    _, headers = make_student()
    r = client.post('/scholarship', json={'amountRequired': 'lots'}, headers=headers)
    assert r.status_code == 400


def test_alumni_cannot_submit_requests(client, make_alumni):
    _, headers = make_alumni()
    r = client.post('/scholarship', json=scholarship_body(), headers=headers)
    assert r.status_code == 400
    assert 'only students' in r.json()['error']


def test_routes_require_authentication(client):
    assert client.post('/scholarship', json=scholarship_body()).status_code == 401
    assert client.get('/scholarships').status_code == 401
    assert client.get('/scholarship/abc').status_code == 401
    assert client.get('/scholarship/abc/contributions').status_code == 401
    assert client.post('/contribute', json={'studentId': 'abc', 'amount': 5}).status_code == 401


def test_unauthenticated_bad_body_is_still_401(client):
    r = client.post('/contribute', json={'nonsense': True})
    assert r.status_code == 401


def test_resubmission_overwrites_and_restarts_total(client, make_student, make_alumni):
    student_id, s_headers = make_student()
    _, a_headers = make_alumni()
    client.post('/scholarship', json=scholarship_body(amount=10000), headers=s_headers)
    assert client.post('/contribute', json={'studentId': student_id, 'amount': 3000}, headers=a_headers).status_code == 200

    client.post('/scholarship', json=scholarship_body(amount=5000), headers=s_headers)
    req = client.get(f'/scholarship/{student_id}', headers=a_headers).json()['request']
    assert req['amountRequired'] == 5000
    assert req['totalReceived'] == 0

    listing = client.get('/scholarships', headers=a_headers).json()['scholarships']
    assert len(listing) == 1
    # the earlier contribution is still in the ledger
    assert client.get('/stats').json()['totalContributions'] == 3000


def test_list_scholarships_is_enriched(client, make_student, make_alumni, store):
    first_id, first_headers = make_student('CS2021001')
    second_id, second_headers = make_student('EE2020042', name='Ravi Kumar', department='Electrical')
    _, a_headers = make_alumni()
    client.post('/scholarship', json=scholarship_body(amount=10000), headers=first_headers)
    client.post('/scholarship', json=scholarship_body(amount=4000), headers=second_headers)
    client.post('/contribute', json={'studentId': second_id, 'amount': 1500}, headers=a_headers)

    r = client.get('/scholarships', headers=a_headers)
    assert r.status_code == 200
    by_id = {s['studentId']: s for s in r.json()['scholarships']}
    assert by_id[first_id]['studentName'] == 'Asha Rao'
    assert by_id[first_id]['studentEmail'] == 'CS2021001@student.internal'
    assert by_id[second_id]['studentDepartment'] == 'Electrical'
    assert by_id[second_id]['studentYear'] == 3
    assert by_id[second_id]['totalReceived'] == 1500
    assert by_id[second_id]['remaining'] == 2500


def test_listing_degrades_for_missing_profile(client, make_alumni, store):
    _, a_headers = make_alumni()
    store.set('scholarship:orphan', {
        'studentId': 'orphan',
        'requestId': 'r1',
        'amountRequired': 700,
        'academicMetrics': {'overallAverage': 7.0, 'periodAverages': []},
        'createdAt': '2024-01-01T00:00:00Z',
    })
    r = client.get('/scholarships', headers=a_headers)
    assert r.status_code == 200
    (entry,) = r.json()['scholarships']
    assert entry['studentName'] == 'Unknown'
    assert entry['studentDepartment'] == 'Unknown'
    assert entry['totalReceived'] == 0


@pytest.mark.parametrize('amount', [True, 1.5, 10000.0])
def test_submit_rejects_non_integer_amount(client, make_student, store, amount):
    student_id, headers = make_student()
    r = client.post('/scholarship', json=scholarship_body(amount=amount), headers=headers)
    assert r.status_code == 400
    assert store.get(f'scholarship:{student_id}') is None


def test_submit_for_another_student_is_rejected(make_student, store):
    student_id, _ = make_student()
    intruder = schemas.Identity(id='someone-else', role='student')
    payload = schemas.ScholarshipIn.model_validate(scholarship_body())
    with pytest.raises(ValidationError) as info:
        services.ScholarshipService(store).submit(intruder, student_id, payload)
    assert 'own scholarship request' in info.value.message
    assert store.get(f'scholarship:{student_id}') is None


def test_unreadable_profile_degrades_listing_and_hides_details(client, make_student, make_alumni, store):
    student_id, s_headers = make_student()
    _, a_headers = make_alumni()
    client.post('/scholarship', json=scholarship_body(), headers=s_headers)
    # a document written by an older client, without the role tag
    store.set(f'user:{student_id}', {'id': student_id, 'userType': 'student', 'name': 'Asha Rao'})

    listing = client.get('/scholarships', headers=a_headers)
    assert listing.status_code == 200
    (entry,) = listing.json()['scholarships']
    assert entry['studentId'] == student_id
    assert entry['studentName'] == 'Unknown'

    single = client.get(f'/scholarship/{student_id}', headers=a_headers)
    assert single.status_code == 500
    assert single.json() == {'error': 'storage unavailable'}
    assert 'discriminator' not in single.text
