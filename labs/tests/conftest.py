import pytest
from django.core.cache import cache

from labs.models import User


@pytest.fixture(autouse=True)
def _clear_cache():
    # listing cache and throttle history must not leak between tests
    cache.clear()
    yield
    cache.clear()


def make_user(username, role, **extra):
    return User.objects.create_user(username=username, password='P@ssw0rd1', role=role, **extra)


@pytest.fixture
def admin(db):
    return make_user('admin1', User.ROLE_ADMIN)


@pytest.fixture
def doctor(db):
    return make_user('doc1', User.ROLE_DOCTOR, first_name='Amara', last_name='Okafor')


@pytest.fixture
def other_doctor(db):
    return make_user('doc2', User.ROLE_DOCTOR)


@pytest.fixture
def receptionist(db):
    return make_user('recep1', User.ROLE_RECEPTIONIST)


@pytest.fixture
def tech(db):
    return make_user('tech1', User.ROLE_LAB_TECHNICIAN)


@pytest.fixture
def pharmacist(db):
    return make_user('pharm1', User.ROLE_PHARMACIST)


@pytest.fixture
def patient(db):
    return make_user('pat1', User.ROLE_PATIENT, first_name='Jo', last_name='Banda')


@pytest.fixture
def other_patient(db):
    return make_user('pat2', User.ROLE_PATIENT)
