import logging

from sqlalchemy.orm import Session

from campus_library.auth.passwords import fits_bcrypt, hash_password
from campus_library.core import config
from campus_library.models.user import User

logger = logging.getLogger(__name__)


def ensure_bootstrap_admin(db: Session) -> User | None:
    """Create the first admin account from configuration when none exists."""
    email = config.BOOTSTRAP_ADMIN_EMAIL.strip().lower()
    if not email or not config.BOOTSTRAP_ADMIN_PASSWORD:
        return None

    existing_admin = db.query(User).filter(User.role == 'admin', User.status == 'active').first()
    if existing_admin is not None:
        return None

    if not fits_bcrypt(config.BOOTSTRAP_ADMIN_PASSWORD):
        logger.error('Bootstrap admin %s skipped: password exceeds %s bytes', email, config.BCRYPT_MAX_PASSWORD_BYTES)
        return None

    if db.query(User).filter(User.email == email).first() is not None:
        logger.warning('Bootstrap admin %s skipped: email belongs to an existing account', email)
        return None

    admin = User(
        email=email,
        password_hash=hash_password(config.BOOTSTRAP_ADMIN_PASSWORD),
        full_name=config.BOOTSTRAP_ADMIN_NAME,
        role='admin',
        status='active',
    )
    db.add(admin)
    db.commit()
    db.refresh(admin)
    logger.info('Created bootstrap admin %s (id=%s)', email, admin.id)
    return admin
