"""
Credentials used to build the authorization header for director and broker
requests.

Both classes plug into google.auth's AuthorizedSession, which asks the
credentials for a header before every request and refreshes them when they
are missing or expired.
"""

import base64
import datetime
import json
import logging
from urllib.parse import urlencode

from google.auth import credentials, exceptions

logger = logging.getLogger(__name__)


class BasicAuthCredentials(credentials.Credentials):
    """HTTP basic authentication."""

    def __init__(self, username: str, password: str):
        super().__init__()
        self.username = username
        self.password = password

    def refresh(self, request) -> None:
        raw = f"{self.username}:{self.password}".encode("utf-8")
        self.token = base64.b64encode(raw).decode("ascii")

    def apply(self, headers, token=None) -> None:
        headers["authorization"] = f"Basic {token or self.token}"


class UAAClientCredentials(credentials.Credentials):
    """Bearer token obtained from UAA with the client-credentials grant."""

    def __init__(self, uaa_url: str, client_id: str, client_secret: str):
        super().__init__()
        self.uaa_url = uaa_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret

    @property
    def token_url(self) -> str:
        return f"{self.uaa_url}/oauth/token"

    def refresh(self, request) -> None:
        """
        Fetch a new access token.

        Args:
            request: google.auth transport request callable

        Raises:
            RefreshError: If UAA does not issue a token
        """
        client = f"{self.client_id}:{self.client_secret}".encode("utf-8")
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
            "Authorization": "Basic " + base64.b64encode(client).decode("ascii"),
        }
        body = urlencode({"grant_type": "client_credentials"})

        response = request(
            url=self.token_url, method="POST", body=body, headers=headers
        )
        if response.status != 200:
            raise exceptions.RefreshError(
                f"UAA token request failed ({response.status}): {response.data!r}"
            )

        try:
            data = json.loads(response.data)
            self.token = data["access_token"]
        except (ValueError, KeyError) as e:
            raise exceptions.RefreshError(
                f"UAA token response could not be parsed: {e}"
            ) from e

        expires_in = int(data.get("expires_in", 0))
        if expires_in > 0:
            now = datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)
            self.expiry = now + datetime.timedelta(seconds=expires_in)
        else:
            self.expiry = None
        logger.debug(f"Obtained UAA token for client {self.client_id}")
