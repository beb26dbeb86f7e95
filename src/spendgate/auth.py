"""
API tokens and pairing codes.

An agent gets its bearer token by redeeming a one-time pairing code that
the user created out of band.
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional, Tuple

from spendgate.clock import Clock, utc_now
from spendgate.errors import NotFound
from spendgate.storage.base import Store


logger = logging.getLogger(__name__)

PAIRING_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
PAIRING_CODE_LENGTH = 8
PAIRING_CODE_TTL = timedelta(minutes=10)


class TokenRegistry:
    """Maps bearer tokens to user ids."""

    def __init__(self, store: Store, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or utc_now

    def issue_token(self, user_id: str) -> str:
        token = f"sg_{secrets.token_urlsafe(24)}"
        self.store.register_api_token(token, user_id)
        return token

    def authenticate(self, token: Optional[str]) -> Optional[str]:
        """User id for a bearer token, or None."""
        if not token:
            return None
        return self.store.get_user_for_token(token)

    def create_pairing_code(self, user_id: str) -> Tuple[str, datetime]:
        """
        Issue a token and a one-time code that exchanges for it.

        Returns:
            Tuple of (code, expires_at)
        """
        token = self.issue_token(user_id)
        code = "".join(secrets.choice(PAIRING_ALPHABET) for _ in range(PAIRING_CODE_LENGTH))
        expires_at = self.clock() + PAIRING_CODE_TTL
        self.store.add_pairing_code(code, token, expires_at)
        logger.info(f"Pairing code created for {user_id}, expires {expires_at.isoformat()}")
        return code, expires_at

    def redeem(self, code: str) -> Tuple[str, str]:
        """
        Exchange a pairing code for its api token.

        Returns:
            Tuple of (api_token, user_id)

        Raises:
            NotFound: Unknown, used or expired code
        """
        token = self.store.redeem_pairing_code(code.strip().upper(), self.clock())
        user_id = self.store.get_user_for_token(token) if token else None
        if token is None or user_id is None:
            raise NotFound("Invalid or expired pairing code")
        logger.info(f"Pairing code redeemed for {user_id}")
        return token, user_id
