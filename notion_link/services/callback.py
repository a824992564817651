"""
Completion of the Notion OAuth flow.

Validates the returned state, exchanges the authorization code with the PKCE
verifier and hands the resulting tokens to the vault.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from notion_link.clients import NotionOAuthClient, SQLiteStore
from notion_link.core.errors import (
    ReplayDetectedError,
    StateExpiredError,
    StateOwnershipMismatchError,
    UnknownStateError,
)
from notion_link.models.oauth import TokenResponse
from notion_link.services.discovery import MetadataDiscoverer
from notion_link.services.notion_tokens import TokenVault
from notion_link.services.token_cipher import TokenCipherService

logger = logging.getLogger(__name__)


class CallbackHandler:
    """Turns an authorization callback into a stored Notion connection."""

    def __init__(
        self,
        store: SQLiteStore,
        discoverer: MetadataDiscoverer,
        oauth_client: NotionOAuthClient,
        token_cipher: TokenCipherService,
        token_vault: TokenVault,
    ) -> None:
        self._store = store
        self._discoverer = discoverer
        self._oauth = oauth_client
        self._cipher = token_cipher
        self._vault = token_vault

    def validate(self, received_state: str, session_user_id: str) -> str:
        """Consume the state and return its decrypted PKCE verifier."""
        record = self._store.get_oauth_state(received_state)
        if record is None:
            raise UnknownStateError()
        if record.consumed:
            logger.warning("Replay of consumed OAuth state %s", record.id)
            raise ReplayDetectedError()
        if record.expires_at <= datetime.now(timezone.utc):
            self._store.delete_oauth_state(record.id)
            raise StateExpiredError()
        if record.user_id != session_user_id:
            logger.warning(
                "OAuth state %s presented by a different user than it was issued to",
                record.id,
            )
            raise StateOwnershipMismatchError()

        if not self._store.mark_state_consumed(record.id):
            raise ReplayDetectedError()

        verifier = self._cipher.decrypt(
            record.encrypted_pkce_verifier, record.pkce_verifier_iv
        )
        logger.info("OAuth state %s validated for user %s", record.id, session_user_id)
        return verifier

    async def exchange(self, code: str, verifier: str) -> TokenResponse:
        metadata = await self._discoverer.discover()
        logger.info("Exchanging authorization code at %s", metadata.token_endpoint)
        tokens = await self._oauth.exchange_authorization_code(
            token_endpoint=metadata.token_endpoint,
            code=code,
            code_verifier=verifier,
        )
        logger.info(
            "Token exchange succeeded (workspace_id=%s, expires_in=%s)",
            tokens.workspace_id,
            tokens.expires_in,
        )
        return tokens

    async def handle_callback(self, code: str, state: str, user_id: str) -> Dict[str, Any]:
        verifier = self.validate(state, user_id)
        tokens = await self.exchange(code, verifier)
        await self._vault.store(user_id, tokens)
        self._store.delete_consumed_states(user_id)
        logger.info("Notion connected for user %s", user_id)
        return {"success": True, "workspace_name": tokens.workspace_name}


__all__ = ["CallbackHandler"]
