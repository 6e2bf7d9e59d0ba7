"""Stored bearer-token credential, read fresh on every request."""

import logging

from .storage import KeyValueStore

logger = logging.getLogger(__name__)


class StoredCredential:
    """Bearer token persisted in the key-value store.

    The login flow writes the token; the API client and the sync processor
    read it at send time so a rotated token is picked up on replay.
    """

    def __init__(self, storage: KeyValueStore, key: str = "AUTH_TOKEN"):
        self._storage = storage
        self._key = key

    async def get_token(self) -> str | None:
        return self._storage.get(self._key) or None

    async def set_token(self, token: str) -> None:
        self._storage.set(self._key, token)
        logger.info("Stored new auth token")

    async def clear(self) -> None:
        self._storage.delete(self._key)


async def auth_headers(
    credential: StoredCredential,
    base: dict[str, str] | None = None,
) -> dict[str, str]:
    """Return ``base`` with the Authorization header set from the stored token.

    Any Authorization value already in ``base`` is replaced when a token is
    stored, and left as is otherwise.
    """
    headers = dict(base or {})
    token = await credential.get_token()
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers
