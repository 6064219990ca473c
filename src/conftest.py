"""Shared pytest fixtures for the VHC workflow tests."""

import pytest

from django.conf import settings
from django.contrib.auth.models import Group, Permission
from django.contrib.contenttypes.models import ContentType

# Run Celery tasks synchronously in tests
settings.CELERY_TASK_ALWAYS_EAGER = True
settings.CELERY_TASK_EAGER_PROPAGATES = True

# Use in-memory cache for tests (avoids Redis connection errors)
settings.CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
    }
}

# Use in-memory channel layer for tests (avoids Redis for WS tests)
settings.CHANNEL_LAYERS = {
    "default": {
        "BACKEND": "channels.layers.InMemoryChannelLayer",
    }
}

settings.EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"
settings.STORAGES["staticfiles"] = {
    "BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage",
}


@pytest.fixture(autouse=True)
def _clear_cache():
    """Clear the in-memory cache before each test.

    Prevents rate-limit counters (django_ratelimit) from bleeding
    across tests.
    """
    from django.core.cache import cache

    cache.clear()


def _ensure_group_permissions(group_name):
    """Create a group with the permissions setup_groups would give it."""
    from inspections.management.commands.setup_groups import (
        GROUP_PERMISSIONS,
    )

    group, _ = Group.objects.get_or_create(name=group_name)
    perms = [
        Permission.objects.get(
            codename=codename,
            content_type=ContentType.objects.get_for_model(model),
        )
        for model, codename in GROUP_PERMISSIONS[group_name]
    ]
    group.permissions.set(perms)
    return group


from inspections.factories import (  # noqa: E402
    InspectionJobFactory,
    OrganizationFactory,
    SiteFactory,
    UserFactory,
)

# --- Organization fixtures ---


@pytest.fixture
def organization(db):
    return OrganizationFactory(name="Northside Motors")


@pytest.fixture
def site(organization):
    return SiteFactory(organization=organization, name="Main Workshop")


# --- User fixtures ---


@pytest.fixture
def password():
    return "testpass123!"


def _member(group_name, organization, **kwargs):
    group = _ensure_group_permissions(group_name)
    user = UserFactory(organization=organization, **kwargs)
    user.groups.add(group)
    return user


@pytest.fixture
def admin_user(db, organization, password):
    return _member(
        "Workshop Admin",
        organization,
        username="workshopadmin",
        display_name="Workshop Admin",
        password=password,
    )


@pytest.fixture
def advisor(db, organization, password):
    return _member(
        "Service Advisor",
        organization,
        username="advisor",
        display_name="Sam Advisor",
        password=password,
    )


@pytest.fixture
def technician(db, organization, password):
    return _member(
        "Technician",
        organization,
        username="tech",
        display_name="Tess Technician",
        password=password,
    )


@pytest.fixture
def second_technician(db, organization, password):
    return _member(
        "Technician",
        organization,
        username="tech2",
        display_name="Theo Technician",
        password=password,
    )


@pytest.fixture
def viewer(db, organization, password):
    return _member(
        "Viewer",
        organization,
        username="viewer",
        display_name="Val Viewer",
        password=password,
    )


@pytest.fixture
def superuser(db, password):
    return UserFactory(
        username="root",
        is_staff=True,
        is_superuser=True,
        password=password,
    )


# --- Job fixtures ---


@pytest.fixture
def make_job(organization, site):
    """Build a job in ``status`` for the shared organization."""

    def _make(status="created", **kwargs):
        kwargs.setdefault("organization", organization)
        kwargs.setdefault("site", site)
        return InspectionJobFactory(status=status, **kwargs)

    return _make


@pytest.fixture
def job(make_job):
    return make_job("created")


@pytest.fixture
def assigned_job(make_job, technician):
    return make_job("assigned", technician=technician)


# --- Client fixtures ---


@pytest.fixture
def advisor_client(client, advisor, password):
    client.login(username=advisor.username, password=password)
    return client


@pytest.fixture
def technician_client(client, technician, password):
    client.login(username=technician.username, password=password)
    return client
