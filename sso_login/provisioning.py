"""
Account side of SSO login: read provider settings for LoginFlow.initialize and
provision the mapped profile just in time (link by subject, then by email, else create).
"""
import json
import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from sso_login.claims import InternalProfile
from sso_login.models import OidcSettings, User
from sso_login.provider import ProviderSettings

logger = logging.getLogger(__name__)

SETTINGS_ROW_ID = 1


def load_provider_settings(db: Session) -> ProviderSettings | None:
    """Settings row as ProviderSettings, or None when SSO was never configured."""
    row = db.get(OidcSettings, SETTINGS_ROW_ID)
    if row is None:
        return None
    return ProviderSettings.from_mapping(
        {
            "enabled": row.enabled,
            "issuer_url": row.issuer_url,
            "client_id": row.client_id,
            "client_secret": row.client_secret,
            "redirect_uri": row.redirect_uri,
            "scope": row.scope,
            "role_claim_path": row.role_claim_path,
            "default_role": row.default_role,
            "role_mapping": row.get_role_mapping(),
        }
    )


def save_provider_settings(db: Session, **fields) -> OidcSettings:
    """Upsert the settings row. Callers re-run LoginFlow.initialize afterwards."""
    unknown = [name for name in fields if name == "id" or name not in OidcSettings.__table__.columns]
    if unknown:
        raise ValueError(f"Unknown OIDC setting(s): {', '.join(unknown)}")
    row = db.get(OidcSettings, SETTINGS_ROW_ID)
    if row is None:
        row = OidcSettings(id=SETTINGS_ROW_ID)
        db.add(row)
    for name, value in fields.items():
        if name == "role_mapping" and isinstance(value, dict):
            value = json.dumps(value)
        setattr(row, name, value)
    db.commit()
    return row


def provision_user(db: Session, profile: InternalProfile) -> tuple[User, bool]:
    """
    Find or create the account for an SSO profile. Returns (user, created).
    Lookup order: provider subject, then email (linking the subject to that account).
    """
    user = None
    if profile.provider_subject:
        user = db.query(User).filter(User.oidc_sub == profile.provider_subject).first()

    created = False
    if user is None:
        user = db.query(User).filter(User.email == profile.email).first()
        if user is not None:
            logger.info("Linking existing user %s to OIDC subject", profile.email)
            user.oidc_sub = profile.provider_subject
        else:
            logger.info("Creating new user %s via OIDC (role=%s)", profile.email, profile.role)
            user = User(
                email=profile.email,
                name=profile.full_name,
                first_name=profile.first_name,
                last_name=profile.last_name,
                role=profile.role,
                oidc_sub=profile.provider_subject,
                manager_first_name=profile.manager_first_name,
                manager_last_name=profile.manager_last_name,
                manager_email=profile.manager_email,
            )
            db.add(user)
            created = True

    user.last_login_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(user)
    return user, created
