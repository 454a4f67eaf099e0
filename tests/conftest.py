"""Shared test fixtures."""
import pytest
from unittest.mock import patch, MagicMock
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from greenbook.database import Base
from greenbook.services.graph import GraphError, GraphNotFound, UserPage


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with schema created; one connection shared by every session."""
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    import greenbook.models.reference
    import greenbook.models.staff
    import greenbook.models.sync_schedule
    import greenbook.models.sync_log
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(autouse=True)
def session_factory(db_engine):
    """Route every get_session() call to the in-memory engine."""
    factory = sessionmaker(bind=db_engine, expire_on_commit=False)
    with patch('greenbook.database.SessionLocal', factory):
        yield factory


@pytest.fixture
def db_session(session_factory):
    """Session for arranging and asserting. Call expire_all() before re-reading rows."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def mock_redis():
    """Mock Redis client. Returns a MagicMock with common Redis methods."""
    mock = MagicMock()
    mock.get.return_value = None
    mock.hgetall.return_value = {}
    with patch('greenbook.extensions.redis_client', mock):
        yield mock


@pytest.fixture
def app(mock_redis):
    """Flask test app (scheduler off)."""
    from greenbook import create_app
    app = create_app(start_scheduler=False)
    app.config['TESTING'] = True
    yield app


@pytest.fixture
def client(app):
    """Flask test client."""
    with app.test_client() as c:
        yield c


# ── Directory fakes ──────────────────────────────────────────────────────────

def make_user(external_id, name=None, department=None, job_title=None, office=None, **extra):
    """Graph-shaped user payload."""
    name = name or f'User {external_id}'
    user = {
        'id': external_id,
        'displayName': name,
        'givenName': name.split()[0],
        'surname': name.split()[-1],
        'userPrincipalName': f'{external_id}@example.org',
        'mail': f'{external_id}@example.org',
        'jobTitle': job_title,
        'department': department,
        'officeLocation': office,
        'businessPhones': [],
        'accountEnabled': True,
    }
    user.update(extra)
    return user


class FakeDirectory:
    """
    In-memory directory source.

    users:    list of Graph-shaped user dicts, served page_size at a time
    managers: external id → manager external id
    Hooks on_page(index) / on_manager(external_id) run inside the calls,
    which lets tests flip a run to cancelled mid-sync.
    """

    def __init__(self, users=None, managers=None, page_size=2):
        self.users = list(users or [])
        self.managers = dict(managers or {})
        self.page_size = page_size
        self.failing_managers = set()
        self.fail_on_page = None
        self.on_page = None
        self.on_manager = None
        self.list_calls = []
        self.manager_calls = []

    def list_users(self, page_token=None):
        index = len(self.list_calls)
        self.list_calls.append(page_token)
        if self.fail_on_page == index:
            raise GraphError('Graph request failed (503): unavailable', status_code=503)
        start = int(page_token or 0)
        end = start + self.page_size
        if self.on_page:
            self.on_page(index)
        return UserPage(
            records=[dict(u) for u in self.users[start:end]],
            next_page_token=str(end) if end < len(self.users) else None,
        )

    def get_manager(self, external_id):
        self.manager_calls.append(external_id)
        if self.on_manager:
            self.on_manager(external_id)
        if external_id in self.failing_managers:
            raise GraphError('Graph request failed (504): gateway timeout', status_code=504)
        manager_id = self.managers.get(external_id)
        return {'id': manager_id, 'displayName': f'User {manager_id}'} if manager_id else None

    def get_direct_reports(self, external_id):
        return [u for u in self.users if self.managers.get(u['id']) == external_id]

    def get_profile(self, external_id):
        for user in self.users:
            if user['id'] == external_id:
                return dict(user)
        raise GraphNotFound(f'Graph object not found: users/{external_id}', status_code=404)


@pytest.fixture
def directory():
    """Three users: u1 reports to nobody, u2 → u1, u3 → u99 (never synced)."""
    users = [
        make_user('u1', 'Ada Obi', department='Finance', job_title='Director', office='Addis Ababa'),
        make_user('u2', 'Ben Kato', department='Finance', job_title='Analyst', office='Addis Ababa'),
        make_user('u3', 'Cy Diallo', department='Legal', job_title='Analyst', office='Nairobi'),
    ]
    return FakeDirectory(users=users, managers={'u2': 'u1', 'u3': 'u99'})
