"""Startup reconciliation of the administrator set."""

from __future__ import annotations

import logging

from .auth import hash_password, verify_password
from .cache import EntityCache
from .config import DEFAULT_ADMIN_PASSWORD, DEFAULT_ADMIN_USERNAME, BootstrapSettings
from .models import ADMINS, Admin, Capability

logger = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"
UNCHANGED = "unchanged"


def ensure_admin(cache: EntityCache, settings: BootstrapSettings) -> str:
    """Make sure at least one administrator exists.

    Configured credentials create the first administrator unconditionally,
    but only touch an existing administrator when ``override`` is set.
    Returns ``created``, ``updated`` or ``unchanged``.
    """
    username = settings.username or DEFAULT_ADMIN_USERNAME
    password = settings.password

    if cache.count(ADMINS) == 0:
        if not password:
            logger.warning("No admin password configured, creating %s with the default password", username)
            password = DEFAULT_ADMIN_PASSWORD
        cache.upsert(ADMINS, Admin(username=username, password_hash=hash_password(password), permissions=[Capability.ALL]))
        logger.info("Created initial administrator %s", username)
        return CREATED

    if not settings.override:
        return UNCHANGED

    existing = cache.get(ADMINS, username)
    if existing is None:
        if not password:
            logger.warning("Admin override set without a password, using the default password for %s", username)
            password = DEFAULT_ADMIN_PASSWORD
        cache.upsert(ADMINS, Admin(username=username, password_hash=hash_password(password), permissions=[Capability.ALL]))
        logger.info("Created configured administrator %s", username)
        return CREATED

    if not password:
        return UNCHANGED
    if existing.password_hash == password or verify_password(existing.password_hash, password):
        return UNCHANGED
    cache.upsert(
        ADMINS,
        Admin(
            username=existing.username,
            password_hash=hash_password(password),
            permissions=list(existing.permissions),
            created_at=existing.created_at,
        ),
    )
    logger.info("Updated password of administrator %s from configuration", username)
    return UPDATED
