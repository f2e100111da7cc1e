import logging
import ssl
from typing import Optional, Protocol

import httpx

from config import settings
from exceptions import CredentialRejected, ServiceUnreachable

logger = logging.getLogger(__name__)

class InferenceProbe(Protocol):
    """Something that can tell whether an endpoint accepts a license key."""

    async def probe(self, endpoint: str, credential: str) -> None:
        """Raise CredentialRejected or ServiceUnreachable if the ping fails."""
        ...

def create_tls_context() -> ssl.SSLContext:
    """
    TLS context for the inference service.

    The installer host may negotiate older protocols by default, so TLS 1.2 is
    the minimum whatever the platform says.
    """
    context = ssl.create_default_context()
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    return context

class HttpInferenceProbe:
    """Pings the inference service over HTTPS with the license key as the auth secret."""

    def __init__(
        self,
        timeout: Optional[float] = None,
        ping_path: Optional[str] = None,
        key_header: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout if timeout is not None else settings.PROBE_TIMEOUT_SECONDS
        self.ping_path = ping_path or settings.PING_PATH
        self.key_header = key_header or settings.LICENSE_KEY_HEADER
        self._transport = transport

    def ping_url(self, endpoint: str) -> str:
        return endpoint.rstrip("/") + "/" + self.ping_path.lstrip("/")

    async def probe(self, endpoint: str, credential: str) -> None:
        url = self.ping_url(endpoint)

        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                verify=create_tls_context(),
                transport=self._transport,
                headers={self.key_header: credential},
            ) as client:
                response = await client.get(url)
        except httpx.TimeoutException as e:
            raise ServiceUnreachable(f"Timed out after {self.timeout}s pinging {url}") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ServiceUnreachable(f"Could not ping {url}: {e}") from e

        if response.status_code in (401, 403):
            raise CredentialRejected(f"{url} rejected the license key ({response.status_code})")

        if response.is_error:
            raise ServiceUnreachable(f"{url} returned HTTP {response.status_code}")

        logger.debug("Ping %s returned %s", url, response.status_code)
