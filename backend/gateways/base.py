"""
Gateway adapter contract.

Every provider implements the same two calls:

    create_redirect(amount, correlation_id, object_type, context) -> redirect URL
    parse_callback(params) -> GatewayCallback

`correlation_id` is the payment attempt id. Each adapter threads it (plus
the object type) through a provider field that is echoed back on the
return path, so a callback can be matched to its attempt without guessing.

Adapters never touch the database. Failures talking to the provider raise
ExternalGatewayError; callbacks that fail verification raise
ReconciliationMismatchError.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

import httpx

from domain.enums import ObjectType, PaymentMethod
from domain.errors import ExternalGatewayError
from domain.subjects import Subject

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchContext:
    """Per-request data a provider may need to build the redirect."""
    object_id: int
    client_ip: str = "127.0.0.1"
    method: PaymentMethod | None = None
    description: str | None = None


@dataclass(frozen=True)
class GatewayCallback:
    """Normalized, verified result of a provider return/IPN call."""
    provider: str
    attempt_id: int
    success: bool
    result_code: str
    amount: Optional[float] = None        # VND, already converted back
    provider_txn_ref: Optional[str] = None
    message: Optional[str] = None
    subject: Optional[Subject] = None
    raw: dict = field(default_factory=dict, repr=False)


class GatewayAdapter(ABC):
    """Base class for provider adapters."""

    name: str = "gateway"

    def __init__(self, *, timeout: float = 15.0, transport: httpx.AsyncBaseTransport | None = None):
        self.timeout = timeout
        # Tests inject httpx.MockTransport here
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _post_json(self, url: str, **kwargs) -> dict:
        """POST and decode JSON, mapping transport/HTTP failures to ExternalGatewayError."""
        try:
            async with self._client() as client:
                response = await client.post(url, **kwargs)
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException as e:
            raise ExternalGatewayError(self.name, "request timed out") from e
        except httpx.HTTPStatusError as e:
            logger.warning(f"{self.name} HTTP {e.response.status_code} from {url}: {e.response.text[:200]}")
            raise ExternalGatewayError(
                self.name, f"HTTP {e.response.status_code}", details={"url": url}
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ExternalGatewayError(self.name, str(e) or e.__class__.__name__) from e

    @abstractmethod
    async def create_redirect(
        self,
        amount: float,
        correlation_id: int,
        object_type: ObjectType,
        context: DispatchContext,
    ) -> str:
        """Return the URL the browser must be sent to."""

    @abstractmethod
    async def parse_callback(self, params: dict) -> GatewayCallback:
        """Verify a provider return/IPN payload and extract its result."""


class GatewayRegistry:
    """Maps payment methods to their adapter."""

    def __init__(self, adapters: dict[PaymentMethod, GatewayAdapter] | None = None):
        self._adapters: dict[PaymentMethod, GatewayAdapter] = dict(adapters or {})

    def register(self, method: PaymentMethod, adapter: GatewayAdapter) -> None:
        self._adapters[method] = adapter

    def get(self, method: PaymentMethod | str) -> GatewayAdapter:
        method = PaymentMethod(method)
        adapter = self._adapters.get(method)
        if adapter is None:
            raise ExternalGatewayError(method.value, "no gateway configured for this payment method")
        return adapter

    def __contains__(self, method) -> bool:
        return PaymentMethod(method) in self._adapters
