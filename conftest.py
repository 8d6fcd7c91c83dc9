"""
Pytest configuration and fixtures.
"""
from datetime import datetime, timezone as dt_timezone
from types import SimpleNamespace

import pytest
from django.conf import settings
import django
from django.core.management import call_command


def pytest_configure(config):
    """Configure Django settings for tests."""
    settings.DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    }
    settings.CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
            'LOCATION': 'seva-tests',
        }
    }
    settings.SENTRY_DSN = None
    django.setup()


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Set up test database with migrations."""
    with django_db_blocker.unblock():
        call_command('migrate', '--run-syncdb', verbosity=0)


@pytest.fixture(autouse=True)
def _fresh_attempt_limiter():
    """Every test starts with an empty process-wide attempt limiter."""
    from apps.core.rate_limiting import reset_attempt_limiter
    reset_attempt_limiter()
    yield
    reset_attempt_limiter()


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def fixed_now():
    """A fixed instant used as the engine clock."""
    return datetime(2025, 6, 1, 12, 0, tzinfo=dt_timezone.utc)


@pytest.fixture
def catalog():
    from apps.rbac.catalog import default_catalog
    return default_catalog()


@pytest.fixture
def store():
    from apps.rbac.stores import InMemoryAssignmentStore
    return InMemoryAssignmentStore()


@pytest.fixture
def engine(store, catalog, fixed_now):
    """Decision engine over the in-memory store, frozen at fixed_now."""
    from apps.rbac.services import DecisionEngine
    return DecisionEngine(store, catalog, clock=lambda: fixed_now)


@pytest.fixture
def make_principal():
    """Build a Principal; ids default to '<role>-1'."""
    from apps.rbac.types import Principal

    def _make(role, id=None, is_active=True):
        return Principal(id=id or f'{role}-1', role=role, is_active=is_active)

    return _make


@pytest.fixture
def make_assignment(store):
    """Create an Assignment and add it to the in-memory store."""
    from apps.rbac.types import Assignment

    def _make(principal, role=None, regions=(), projects=(), schemes=(), **kwargs):
        assignment = Assignment(
            principal_id=principal.id,
            role=role or principal.role,
            regions=frozenset(regions),
            projects=frozenset(projects),
            schemes=frozenset(schemes),
            **kwargs
        )
        return store.add(assignment)

    return _make


@pytest.fixture
def upstream_user():
    """
    Build the user object the upstream authentication layer would attach.

    Pass it to APIClient.force_authenticate().
    """
    def _make(role, id=None, is_active=True):
        return SimpleNamespace(
            id=id or f'{role}-1',
            role=role,
            is_active=is_active,
            is_authenticated=True,
        )

    return _make
