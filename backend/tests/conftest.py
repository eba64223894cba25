from pathlib import Path
import os
import tempfile
import pytest

# Point the app at a throwaway database before anything imports it.
_TMP_DIR = Path(tempfile.mkdtemp(prefix="scholarfund-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR / 'test.db'}"
os.environ["AUTH_RATE_LIMIT_PER_MIN"] = "1000"

STUDENT_PASSWORD = "student-pass"
ALUMNI_PASSWORD = "alumni-pass"


@pytest.fixture(autouse=True)
def reset_db():
    """Start every test from empty tables and a fresh auth rate limiter."""
    from sqlmodel import SQLModel
    from scholarfund.database import engine, create_db_and_tables
    from scholarfund import main
    SQLModel.metadata.drop_all(engine)
    create_db_and_tables()
    main._auth_limiter.reset()
    yield


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from scholarfund.main import app
    return TestClient(app)


@pytest.fixture
def store():
    from scholarfund.database import KeyValueStore
    return KeyValueStore()


def student_payload(roll_number="CS2021001", semester=5, **overrides):
    payload = {
        'role': 'student',
        'name': 'Asha Rao',
        'phone': '9876543210',
        'department': 'Computer Science',
        'rollNumber': roll_number,
        'year': 3,
        'semester': semester,
        'password': STUDENT_PASSWORD,
    }
    payload.update(overrides)
    return payload


def alumni_payload(email="mentor@example.com", **overrides):
    payload = {
        'role': 'alumni',
        'name': 'Vikram Shah',
        'phone': '9123456780',
        'department': 'Mechanical',
        'email': email,
        'passedOutYear': 2012,
        'linkedIn': 'https://linkedin.com/in/vshah',
        'password': ALUMNI_PASSWORD,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_student(client):
    """Sign up and log in a student; returns (user_id, auth headers)."""
    def _make(roll_number="CS2021001", **overrides):
        r = client.post('/signup', json=student_payload(roll_number, **overrides))
        assert r.status_code == 200, r.text
        login = client.post('/login', json={'role': 'student', 'identifier': roll_number, 'password': STUDENT_PASSWORD})
        assert login.status_code == 200, login.text
        return r.json()['userId'], {'Authorization': f"Bearer {login.json()['token']}"}
    return _make


@pytest.fixture
def make_alumni(client):
    """Sign up and log in an alumnus; returns (user_id, auth headers)."""
    def _make(email="mentor@example.com", **overrides):
        r = client.post('/signup', json=alumni_payload(email, **overrides))
        assert r.status_code == 200, r.text
        login = client.post('/login', json={'role': 'alumni', 'identifier': email, 'password': ALUMNI_PASSWORD})
        assert login.status_code == 200, login.text
        return r.json()['userId'], {'Authorization': f"Bearer {login.json()['token']}"}
    return _make


def scholarship_body(amount=10000, overall=8.2, periods=((1, 8.0), (2, 8.4))):
    return {
        'amountRequired': amount,
        'academicMetrics': {
            'overallAverage': overall,
            'periodAverages': [{'semester': s, 'gpa': g} for s, g in periods],
        },
        'reason': 'Tuition for the final year',
    }
