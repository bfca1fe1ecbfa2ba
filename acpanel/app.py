"""Flask application entrypoint."""

from __future__ import annotations

import logging
import secrets
from typing import Callable, Optional

from flask import Flask

from .auth import SessionTokenStore
from .bootstrap import ensure_admin
from .cache import EntityCache
from .claims import ClaimService
from .config import Settings, configure_logging, insecure_defaults, load_settings
from .datastore import DataStore
from .mail import Mailer, create_mailer
from .models import now_ts
from .routes.admin import register_admin_routes
from .routes.user import register_user_routes
from .storage import StorageFacade, create_storage
from .sweeper import Sweeper
from .verification import VerificationCodeService

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    storage: Optional[StorageFacade] = None,
    mailer: Optional[Mailer] = None,
    clock: Optional[Callable[[], int]] = None,
) -> Flask:
    settings = settings or load_settings()
    configure_logging(settings.log_level)
    for warning in insecure_defaults(settings):
        logger.warning("配置检查：%s", warning)

    clock = clock or now_ts
    storage = storage or create_storage(settings.storage)
    cache = EntityCache(storage, clock)
    cache.load()
    ensure_admin(cache, settings.bootstrap)

    codes = VerificationCodeService(cache)
    tokens = SessionTokenStore(settings.web.token_ttl, settings.web.token_sliding, clock)

    app = Flask(__name__)
    app.config["SECRET_KEY"] = settings.web.secret_key or secrets.token_hex(16)
    app.json.ensure_ascii = False

    app.config["SETTINGS"] = settings
    app.config["STORAGE"] = storage
    app.config["CACHE"] = cache
    datastore = DataStore(cache, codes)
    app.config["DATASTORE"] = datastore
    app.config["CODES"] = codes
    app.config["CLAIMS"] = ClaimService(cache)
    app.config["TOKENS"] = tokens
    app.config["MAILER"] = mailer or create_mailer(settings.smtp)

    sweeper = Sweeper(
        settings.sweep_interval,
        [codes.sweep_expired, tokens.sweep, datastore.publish_due_announcements],
    )
    app.config["SWEEPER"] = sweeper
    sweeper.start()

    register_admin_routes(app)
    register_user_routes(app)
    logger.info("Panel ready with %s storage", storage.kind)
    return app


def shutdown(app: Flask) -> None:
    """Stop background work, write every collection back and release the backend."""
    app.config["SWEEPER"].stop()
    if not app.config["CACHE"].flush():
        logger.error("Some records could not be written during shutdown")
    app.config["STORAGE"].close()


def main() -> None:
    app = create_app()
    try:
        app.run()
    finally:
        shutdown(app)


if __name__ == "__main__":
    main()
