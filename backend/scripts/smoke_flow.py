"""Drive one full funding round against the app in-process.

Signs up a student and an alumnus, submits a scholarship request,
records a contribution and prints the resulting stats. The client-side
session (token + profile) is an explicit `ClientSession` value handed to
every call instead of ambient state.

Run from the `backend/` folder: `python scripts/smoke_flow.py`. Set
`DATABASE_URL` to avoid writing into the default `app.db`.
"""

import sys
import os
import uuid
from dataclasses import dataclass

# Ensure backend folder is on sys.path so `scholarfund` can be imported
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from fastapi.testclient import TestClient
from scholarfund.main import app


@dataclass(frozen=True)
class ClientSession:
    token: str
    profile: dict

    @property
    def headers(self) -> dict:
        return {'Authorization': f'Bearer {self.token}'}


def signup_and_login(client: TestClient, payload: dict, identifier: str) -> ClientSession:
    r = client.post('/signup', json=payload)
    r.raise_for_status()
    login = client.post('/login', json={'role': payload['role'], 'identifier': identifier, 'password': payload['password']})
    login.raise_for_status()
    body = login.json()
    return ClientSession(token=body['token'], profile=body['profile'])


def submit_request(client: TestClient, session: ClientSession, amount: int) -> dict:
    r = client.post('/scholarship', headers=session.headers, json={
        'amountRequired': amount,
        'academicMetrics': {'overallAverage': 8.5, 'periodAverages': [{'semester': 1, 'gpa': 8.5}]},
        'reason': 'smoke test',
    })
    r.raise_for_status()
    return r.json()['scholarship']


def contribute(client: TestClient, session: ClientSession, student_id: str, amount: int) -> dict:
    r = client.post('/contribute', headers=session.headers, json={'studentId': student_id, 'amount': amount})
    r.raise_for_status()
    return r.json()['contribution']


def run():
    client = TestClient(app)
    tag = uuid.uuid4().hex[:8]
    student = signup_and_login(client, {
        'role': 'student', 'name': 'Smoke Student', 'phone': '000', 'department': 'CSE',
        'rollNumber': f'SMOKE{tag}', 'year': 2, 'semester': 3, 'password': 'smoke-pass',
    }, f'SMOKE{tag}')
    alumnus = signup_and_login(client, {
        'role': 'alumni', 'name': 'Smoke Alumnus', 'phone': '111', 'department': 'CSE',
        'email': f'smoke-{tag}@example.com', 'password': 'smoke-pass',
    }, f'smoke-{tag}@example.com')
    submit_request(client, student, 5000)
    print('CONTRIBUTION:', contribute(client, alumnus, student.profile['id'], 1250))
    print('REQUEST:', client.get(f"/scholarship/{student.profile['id']}", headers=alumnus.headers).json()['request'])
    print('STATS:', client.get('/stats').json())


if __name__ == '__main__':
    run()
