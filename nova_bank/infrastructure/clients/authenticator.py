"""Strong re-authentication (passkey) client

The cryptographic ceremony happens on the user's device and in the verifier
service; this client only asks the verifier for a proof-of-possession against
the user's registered credential ids and reads back a boolean.
"""

import base64
from typing import List

import httpx

from nova_bank.config import settings
from nova_bank.domain.exceptions import ExternalServiceError


def encode_credential_id(raw: bytes) -> str:
    """Credential ids are stored as unpadded base64url"""
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def decode_credential_id(encoded: str) -> bytes:
    padding = "=" * (-len(encoded) % 4)
    return base64.urlsafe_b64decode(encoded + padding)


class PasskeyAuthenticator:
    """Client for the external passkey verifier"""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        http: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url or settings.auth_api_base
        self.timeout = timeout or settings.auth_challenge_timeout_seconds
        self.http = http or httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)

    async def challenge(self, user_id: str, credential_ids: List[str]) -> bool:
        """
        Request proof-of-possession of one of ``credential_ids``.

        Raises:
            ExternalServiceError: On timeout, HTTP errors, or invalid response
        """
        try:
            response = await self.http.post(
                "/challenges",
                json={"user_id": user_id, "allow_credentials": credential_ids},
            )
            response.raise_for_status()
            return bool(response.json()["verified"])

        except httpx.TimeoutException as e:
            raise ExternalServiceError(f"Passkey verifier timeout after {self.timeout}s") from e
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(f"Passkey verifier error: {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise ExternalServiceError(f"Passkey verifier unreachable: {e}") from e
        except (KeyError, ValueError, TypeError) as e:
            raise ExternalServiceError(f"Invalid challenge response: {e}") from e

    async def aclose(self) -> None:
        await self.http.aclose()
