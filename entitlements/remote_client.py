"""
Remote Authority Client - subscription status lookup by identity

Stateless request/response wrapper around the billing authority:

    GET {base_url}/check-subscription?email=<identity>

Every outcome other than a 2xx response with a well-formed body is returned
as a ``Failure`` value. Nothing raised here should ever reach the resolver.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field, StrictBool, ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from entitlements.errors import MalformedResponse, NetworkFailure
from entitlements.models import Failure, FailureKind, RemoteStatus, SubscriptionStatus

logger = logging.getLogger(__name__)


class SubscriptionApiResponse(BaseModel):
    """Wire schema of the check-subscription endpoint"""
    model_config = ConfigDict(populate_by_name=True)

    subscribed: StrictBool
    status: SubscriptionStatus
    plan: Optional[str] = None
    current_period_end: Optional[float] = Field(default=None, alias="currentPeriodEnd", ge=0)
    cancel_at_period_end: bool = Field(default=False, alias="cancelAtPeriodEnd")

    def to_remote_status(self) -> RemoteStatus:
        period_end = None
        if self.current_period_end:
            period_end = datetime.fromtimestamp(self.current_period_end, tz=timezone.utc)
        return RemoteStatus(
            subscribed=self.subscribed,
            status=self.status,
            plan=self.plan or "",
            current_period_end=period_end,
            cancel_at_period_end=self.cancel_at_period_end,
        )


class RemoteAuthorityClient:
    """
    Looks up subscription status with the remote billing authority.

    A fresh ``httpx.AsyncClient`` is opened per lookup. ``timeout`` bounds the
    whole lookup, retries and body included, so a slow or hung server can
    never keep the resolver in the loading state.
    Connection errors (request never sent) are retried a bounded number of
    times; timeouts and HTTP errors are not.
    """

    CHECK_PATH = "/check-subscription"

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_attempts: int = 2,
        retry_wait: float = 0.5,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)
        self.retry_wait = retry_wait
        self._transport = transport

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}{self.CHECK_PATH}"

    async def fetch_status(self, identity: str) -> Union[RemoteStatus, Failure]:
        """
        Fetch the subscription status for an identity.

        Returns:
            RemoteStatus on success, Failure otherwise
        """
        try:
            payload = await self._request(identity)
            return self._parse(payload)

        except NetworkFailure as e:
            logger.warning(f"Subscription check failed for {identity}: {e.message}")
            return Failure(kind=FailureKind.NETWORK, message=e.message, status_code=e.status_code)

        except MalformedResponse as e:
            logger.error(f"Subscription check returned malformed payload for {identity}: {e.message}")
            return Failure(kind=FailureKind.MALFORMED, message=e.message)

    async def _request(self, identity: str) -> object:
        try:
            response = await asyncio.wait_for(self._send(identity), timeout=self.timeout)
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            raise NetworkFailure(f"Timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise NetworkFailure(f"Transport error: {e}") from e

        if not response.is_success:
            raise NetworkFailure(
                f"Subscription API returned status {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponse(f"Response body is not JSON: {e}") from e

    async def _send(self, identity: str) -> httpx.Response:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_wait, max=self.retry_wait * 4),
            retry=retry_if_exception_type(httpx.ConnectError),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    response = await client.get(
                        self.endpoint,
                        params={"email": identity},
                        headers={"Accept": "application/json"},
                    )
        return response

    def _parse(self, payload: object) -> RemoteStatus:
        try:
            parsed = SubscriptionApiResponse.model_validate(payload)
        except ValidationError as e:
            raise MalformedResponse(f"Unexpected response schema: {e.error_count()} error(s)") from e
        try:
            return parsed.to_remote_status()
        except (OverflowError, OSError, ValueError) as e:
            raise MalformedResponse(f"currentPeriodEnd out of range: {e}") from e
