"""
Bearer-token lookup for connecting clients.

Authentication itself belongs to the tournament backend; this module only maps
the tokens it issued to a ClientIdentity. The mapping is loaded from a JSON
file of the form::

    {"<token>": {"principal": "u-17", "role": "team_owner", "team_id": "csk"}}
"""

import json
import logging
from pathlib import Path
from typing import Dict, Optional

from .errors import Unauthorized
from .session_models import ClientIdentity, Role

logger = logging.getLogger(__name__)


class TokenAuthenticator:
    """Resolves bearer tokens to identities."""

    def __init__(self, tokens: Optional[Dict[str, ClientIdentity]] = None):
        self._tokens: Dict[str, ClientIdentity] = dict(tokens or {})

    @classmethod
    def from_file(cls, filepath: Path) -> 'TokenAuthenticator':
        """
        Load the token table. A missing file yields an authenticator that
        rejects everyone.
        """
        filepath = Path(filepath)
        if not filepath.exists():
            logger.warning(f"Auth tokens file not found: {filepath}; all clients will be rejected")
            return cls()

        with open(filepath, 'r', encoding='utf-8') as f:
            raw = json.load(f)

        tokens = {}
        for token, entry in raw.items():
            try:
                tokens[token] = ClientIdentity(
                    principal_id=str(entry['principal']),
                    role=Role(entry['role']),
                    team_id=entry.get('team_id')
                )
            except (KeyError, ValueError) as e:
                logger.error(f"Invalid auth entry for principal {entry.get('principal')}: {e}")

        logger.info(f"Loaded {len(tokens)} auth tokens from {filepath}")
        return cls(tokens)

    def add(self, token: str, identity: ClientIdentity) -> None:
        self._tokens[token] = identity

    def authenticate(self, token: Optional[str]) -> ClientIdentity:
        """
        Raises:
            Unauthorized: If the token is missing or unknown
        """
        if not token:
            raise Unauthorized("Missing bearer token")
        identity = self._tokens.get(token)
        if identity is None or identity.role == Role.SYSTEM:
            raise Unauthorized("Invalid bearer token")
        return identity

    def authenticate_header(self, authorization: Optional[str]) -> ClientIdentity:
        """Authenticate an ``Authorization: Bearer <token>`` header value."""
        if not authorization or not authorization.lower().startswith('bearer '):
            raise Unauthorized("Missing bearer token")
        return self.authenticate(authorization[7:].strip())
