import json
import logging

from app.config import Settings

from .base import CredentialStore
from .memory import MemoryCredentialStore

logger = logging.getLogger("speechbridge.storage")


def get_credential_store(settings: Settings) -> CredentialStore:
    """Return the credential store for the configured environment.

    DATABASE_URL set -> MongoDB, otherwise the in-memory store.
    """
    if settings.database_url:
        from .mongo import MongoCredentialStore

        return MongoCredentialStore(settings.database_url, settings.database_name)

    logger.info(json.dumps({"event": "credential_store_memory", "env": settings.env}))
    return MemoryCredentialStore()
