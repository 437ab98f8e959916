"""
mail.tm API Client

Provides asynchronous access to the mail.tm REST API using aiohttp.
Handles bearer authentication and maps HTTP failures onto the
MailboxAPIError hierarchy so callers can tell an expired token apart
from a transient provider failure.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from ..core.config import MailboxConfig
from ..core.exceptions import MailboxAPIError, MailboxAuthenticationError, MailboxNetworkError


logger = logging.getLogger(__name__)


class MailboxClient:
    """
    mail.tm API client.

    One client (and one pooled aiohttp session) is shared by every monitor;
    the access token is passed per call since each user has their own.

    Usage:
        client = MailboxClient(MailboxConfig())
        messages = await client.list_messages(token)
        detail = await client.get_message(token, messages[0]["id"])
        await client.close()
    """

    def __init__(self, config: MailboxConfig, session: Optional[aiohttp.ClientSession] = None):
        """
        Initialize mail.tm client.

        Args:
            config: MailboxConfig with base URL and timeout
            session: Existing aiohttp session (created lazily if None)
        """
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None

        logger.info(f"MailboxClient initialized (base_url: {self.base_url})")

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=100,  # Connection pool size
                ttl_dns_cache=300,  # Cache DNS for 5 minutes
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_seconds),
            )
            self._owns_session = True
        return self._session

    async def close(self):
        """Close the underlying HTTP session if this client created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    async def _request(
        self,
        method: str,
        endpoint: str,
        token: Optional[str] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Make a request to mail.tm and return the decoded JSON body.

        Args:
            method: HTTP method (GET, POST)
            endpoint: API endpoint (e.g., '/messages')
            token: Bearer token (omitted for /token)
            json: JSON body

        Returns:
            Decoded JSON response

        Raises:
            MailboxAuthenticationError: On 401 responses
            MailboxNetworkError: On connection errors and timeouts
            MailboxAPIError: On any other non-2xx response
        """
        url = f"{self.base_url}{endpoint}"
        headers = {"Accept": "application/ld+json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        logger.debug(f"{method} {url}")

        try:
            async with self._get_session().request(method, url, json=json, headers=headers) as response:
                if response.status == 401:
                    raise MailboxAuthenticationError(f"{method} {endpoint} unauthorized", status_code=401)

                if response.status >= 400:
                    body = await response.text()
                    raise MailboxAPIError(
                        f"mail.tm request failed: {response.status} - {body[:200]}",
                        status_code=response.status,
                    )

                return await response.json(content_type=None)

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise MailboxNetworkError(f"{method} {endpoint} failed: {str(e) or type(e).__name__}") from e
        except ValueError as e:
            raise MailboxAPIError(f"{method} {endpoint} returned invalid JSON: {e}") from e

    async def list_messages(self, token: str) -> List[Dict[str, Any]]:
        """
        List messages in the mailbox, newest first.

        Args:
            token: Mailbox access token

        Returns:
            List of message summaries ({id, from: {address}, subject, ...})
        """
        data = await self._request("GET", "/messages", token=token)

        # Plain JSON responses are a bare list; JSON-LD wraps it in a hydra collection
        if isinstance(data, list):
            return data
        return data.get("hydra:member") or []

    async def get_message(self, token: str, message_id: str) -> Dict[str, Any]:
        """
        Get full message content.

        Args:
            token: Mailbox access token
            message_id: mail.tm message ID

        Returns:
            Message detail including ``text`` and ``html`` bodies
        """
        return await self._request("GET", f"/messages/{message_id}", token=token)

    async def issue_token(self, address: str, password: str) -> str:
        """
        Request a fresh access token for a mailbox.

        Args:
            address: Mailbox address
            password: Mailbox password

        Returns:
            New bearer token

        Raises:
            MailboxAuthenticationError: If the credentials are rejected
            MailboxAPIError: If the response carries no token
        """
        data = await self._request("POST", "/token", json={"address": address, "password": password})

        token = data.get("token")
        if not token:
            raise MailboxAPIError("Token response did not include a token")

        logger.info(f"Issued new access token for {address}")
        return token
