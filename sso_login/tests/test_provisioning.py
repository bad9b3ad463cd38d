"""
Tests for the account collaborator: settings row -> LoginFlow.initialize,
and just-in-time provisioning of SSO profiles.
"""
import pytest

from sso_login.claims import InternalProfile
from sso_login.database import SessionLocal, init_db
from sso_login.models import OidcSettings, User
from sso_login.provisioning import load_provider_settings, provision_user, save_provider_settings

from conftest import CLIENT_ID, ISSUER


@pytest.fixture
def db():
    init_db()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.query(User).delete()
        session.query(OidcSettings).delete()
        session.commit()
        session.close()


def _profile(**overrides) -> InternalProfile:
    fields = {
        "email": "jane@example.com",
        "first_name": "Jane",
        "last_name": "Doe",
        "full_name": "Jane Doe",
        "role": "manager",
        "provider_subject": "user-42",
    }
    fields.update(overrides)
    return InternalProfile(**fields)


def test_no_settings_row(db):
    assert load_provider_settings(db) is None


def test_settings_round_trip_into_flow(db, flow):
    save_provider_settings(
        db,
        enabled=True,
        issuer_url=ISSUER,
        client_id=CLIENT_ID,
        role_claim_path="groups",
        role_mapping={"admin": "it-admins", "manager": "leads", "employee": "staff"},
    )
    settings = load_provider_settings(db)
    assert settings.enabled is True
    assert settings.scope == "openid email profile"
    assert settings.role_name_mapping["admin"] == "it-admins"

    assert flow.initialize(settings) is not None
    assert flow.extract_user_data({"email": "a@b.c", "groups": ["IT-Admins"]}).role == "admin"


def test_save_unknown_setting_rejected(db):
    with pytest.raises(ValueError):
        save_provider_settings(db, colour="blue")
    assert load_provider_settings(db) is None


def test_disabled_row_disables_flow(db, flow):
    save_provider_settings(db, enabled=False, issuer_url=ISSUER, client_id=CLIENT_ID)
    assert flow.initialize(load_provider_settings(db)) is None
    assert not flow.is_enabled()


def test_creates_user(db):
    user, created = provision_user(db, _profile(manager_email="boss@example.com"))
    assert created is True
    assert user.id is not None
    assert user.email == "jane@example.com"
    assert user.name == "Jane Doe"
    assert user.role == "manager"
    assert user.oidc_sub == "user-42"
    assert user.manager_email == "boss@example.com"
    assert user.last_login_at is not None


def test_finds_user_by_subject(db):
    first, _ = provision_user(db, _profile())
    again, created = provision_user(db, _profile(email="jane.doe@example.com"))
    assert created is False
    assert again.id == first.id
    assert db.query(User).count() == 1


def test_links_existing_user_by_email(db):
    db.add(User(email="jane@example.com", name="Jane", role="admin"))
    db.commit()
    user, created = provision_user(db, _profile())
    assert created is False
    assert user.oidc_sub == "user-42"
    # existing role is not overwritten by the mapped role
    assert user.role == "admin"
