"""
Start of the Notion OAuth flow: state persistence and consent URL.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

from notion_link.clients import SQLiteStore
from notion_link.core.config import NotionSettings, OAuthSettings
from notion_link.services.discovery import MetadataDiscoverer
from notion_link.services.pkce import generate_pkce
from notion_link.services.token_cipher import TokenCipherService

logger = logging.getLogger(__name__)


class AuthorizationFlowManager:
    """Issues single-use OAuth states and builds the authorization URL."""

    def __init__(
        self,
        store: SQLiteStore,
        discoverer: MetadataDiscoverer,
        token_cipher: TokenCipherService,
        notion_settings: NotionSettings,
        oauth_settings: OAuthSettings,
    ) -> None:
        self._store = store
        self._discoverer = discoverer
        self._cipher = token_cipher
        self._notion = notion_settings
        self._state_ttl = timedelta(seconds=oauth_settings.state_ttl_seconds)

    async def begin(self, user_id: str) -> str:
        """Persist a fresh state for ``user_id`` and return the consent URL.

        Every call creates an independent state; earlier pending states stay
        valid until they expire or are consumed. Only the PKCE challenge is
        placed in the URL, the verifier is stored encrypted.
        """
        metadata = await self._discoverer.discover()
        pkce = generate_pkce()
        state = secrets.token_urlsafe(32)
        expires_at = datetime.now(timezone.utc) + self._state_ttl

        state_id = self._store.insert_oauth_state(
            state_value=state,
            user_id=user_id,
            verifier=self._cipher.encrypt(pkce.verifier),
            expires_at=expires_at,
        )
        logger.info(
            "OAuth state %s stored for user %s (expires %s)",
            state_id,
            user_id,
            expires_at.isoformat(),
        )

        params = {
            "client_id": self._notion.client_id,
            "redirect_uri": str(self._notion.redirect_uri),
            "response_type": "code",
            "owner": "user",
            "code_challenge": pkce.challenge,
            "code_challenge_method": pkce.method,
            "state": state,
        }
        return f"{metadata.authorization_endpoint}?{urlencode(params)}"


__all__ = ["AuthorizationFlowManager"]
