"""
Read-only credential source backed by a Google OAuth ``token.json`` file.

Acquiring and refreshing tokens is the job of the setup tooling; this class
only exposes what the health checker needs.
"""

import json
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

import aiofiles

from gmeet_mcp.exceptions import CredentialError
from gmeet_mcp.logging.logger import logger


class TokenFileCredentials:
    """OAuth credentials loaded from a token file on every request."""

    def __init__(self, token_path: Union[str, Path]):
        self.token_path = Path(token_path)
        self.expiry_date: Optional[int] = None  # epoch milliseconds
        self.scope: Optional[str] = None

    async def _load(self) -> Dict[str, Any]:
        try:
            async with aiofiles.open(self.token_path, "r", encoding="utf-8") as f:
                raw = await f.read()
        except FileNotFoundError:
            raise CredentialError(f"Token file not found: {self.token_path}")
        except OSError as e:
            raise CredentialError(f"Cannot read token file {self.token_path}: {e}")

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise CredentialError(f"Token file is not valid JSON: {e}")
        if not isinstance(data, dict):
            raise CredentialError("Token file must contain a JSON object")
        return data

    @staticmethod
    def _parse_expiry(data: Dict[str, Any]) -> Optional[int]:
        if data.get("expiry_date") is not None:
            try:
                return int(data["expiry_date"])
            except (TypeError, ValueError):
                return None
        # google-auth writes an ISO "expiry" instead
        if data.get("expiry"):
            try:
                expiry = datetime.fromisoformat(str(data["expiry"]).replace("Z", "+00:00"))
            except ValueError:
                return None
            return int(expiry.timestamp() * 1000)
        return None

    async def get_access_token(self) -> str:
        """Return the stored access token, or raise CredentialError."""
        data = await self._load()

        self.expiry_date = self._parse_expiry(data)
        scope = data.get("scope") or data.get("scopes")
        self.scope = " ".join(scope) if isinstance(scope, list) else scope

        token = data.get("access_token") or data.get("token")
        if not token:
            raise CredentialError("No access token in token file")

        if self.expiry_date is not None and self.expiry_date <= time.time() * 1000:
            logger.warning("Access token in token file has expired")
            raise CredentialError("Access token has expired; refresh required")

        return token
