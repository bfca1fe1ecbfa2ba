"""Dependency helpers for retrieving shared services."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from flask import current_app

if TYPE_CHECKING:
    from .auth import SessionTokenStore
    from .datastore import DataStore


def _service(name: str) -> Any:
    service = current_app.config.get(name)
    if service is None:
        raise RuntimeError(f"{name} has not been initialised on the Flask app")
    return service


def get_datastore() -> "DataStore":
    return _service("DATASTORE")


def get_tokens() -> "SessionTokenStore":
    return _service("TOKENS")
