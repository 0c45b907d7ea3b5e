"""
Authorization pipeline for Stats API requests.

Runs four gates in order and stops at the first failure:

    extract bearer token -> resolve API key -> hourly rate limit -> site access

The result is an ``Authorized`` or ``Denied`` value. Collaborator outages are
raised as ``CollaboratorUnavailableError`` and never turned into a denial.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from fastapi import HTTPException, Request
from opentelemetry import trace

from shared.errors import CollaboratorUnavailableError
from shared.logging import get_logger, set_api_key_context
from shared.metrics import MetricsCollector
from shared.tracing import add_site_attributes, get_tracer
from ..adapters.directory import AccessDirectory
from ..auth.bearer import HeaderSource, extract_bearer_token
from ..ratelimit.fixed_window import ONE_HOUR_MS, FixedWindowRateLimiter
from .access_evaluator import AccessEvaluator
from .models import Authorized, AuthorizationResult, Denied, DenialReason, Site


@dataclass(frozen=True)
class DenialResponse:
    """HTTP rendering of a denial reason."""
    status_code: int
    message: str


DENIAL_RESPONSES: Dict[DenialReason, DenialResponse] = {
    DenialReason.MISSING_API_KEY: DenialResponse(
        401,
        "Missing API key. Please use a valid API key as a Bearer Token."
    ),
    DenialReason.MISSING_SITE_ID: DenialResponse(
        400,
        "Missing site ID. Please provide the required site_id parameter with your request."
    ),
    DenialReason.RATE_LIMIT: DenialResponse(
        429,
        "Too many API requests. Your API key is limited to {limit} requests per hour. "
        "Please contact us to request more capacity."
    ),
    DenialReason.INVALID_API_KEY: DenialResponse(
        401,
        "Invalid API key or site ID. Please make sure you're using a valid API key "
        "with access to the site you've requested."
    ),
    DenialReason.UPGRADE_REQUIRED: DenialResponse(
        402,
        "Stats API is part of the Business plan. To get access to this feature, "
        "please upgrade your account."
    ),
    DenialReason.SITE_LOCKED: DenialResponse(
        402,
        "This site is locked due to missing active subscription. In order to access it, "
        "the site owner should subscribe to a suitable plan"
    ),
}


def denial_response(denied: Denied) -> DenialResponse:
    """Map a denial to its status code and user-facing message."""
    template = DENIAL_RESPONSES[denied.reason]
    return DenialResponse(template.status_code, template.message.format(limit=denied.limit))


class StatsApiDenied(HTTPException):
    """Raised by the FastAPI dependency when a request is denied."""

    def __init__(self, denied: Denied):
        self.denied = denied
        response = denial_response(denied)
        super().__init__(status_code=response.status_code, detail=response.message)


class StatsApiAuthorizer:
    """Composes extraction, key lookup, rate limiting and access evaluation."""

    def __init__(self, directory: AccessDirectory, rate_limiter: FixedWindowRateLimiter,
                 evaluator: Optional[AccessEvaluator] = None, window_ms: int = ONE_HOUR_MS,
                 metrics: Optional[MetricsCollector] = None,
                 tracer: Optional[trace.Tracer] = None):
        self.directory = directory
        self.rate_limiter = rate_limiter
        self.evaluator = evaluator or AccessEvaluator(directory)
        self.window_ms = window_ms
        self.metrics = metrics
        self.logger = get_logger("gateway.authorizer")
        self.tracer = tracer or get_tracer("gateway.authorizer")

    async def authorize(self, headers: HeaderSource, site_id: Optional[str]) -> AuthorizationResult:
        """Decide whether the request described by ``headers`` may read ``site_id``."""
        try:
            if self.metrics is not None:
                with self.metrics.time_operation("authorization_duration_seconds"):
                    result = await self._authorize(headers, site_id)
            else:
                result = await self._authorize(headers, site_id)
        except CollaboratorUnavailableError as e:
            self.logger.error("Authorization aborted", collaborator=e.collaborator, error=e.message)
            self._record("error", e.code.lower())
            raise

        if isinstance(result, Denied):
            self.logger.info("Stats API request denied", reason=result.reason.value, site_id=site_id)
            self._record("denied", result.reason.value)
        else:
            self._record("authorized")
        return result

    async def _authorize(self, headers: HeaderSource, site_id: Optional[str]) -> AuthorizationResult:
        with self.tracer.start_as_current_span("stats_api.authorize") as span:
            result = await self._run_gates(headers, site_id)
            if isinstance(result, Denied):
                span.set_attribute("stats_api.denial_reason", result.reason.value)
            return result

    async def _run_gates(self, headers: HeaderSource, site_id: Optional[str]) -> AuthorizationResult:
        token = extract_bearer_token(headers)
        if token is None:
            return Denied(DenialReason.MISSING_API_KEY)

        api_key = await self.directory.find_api_key(token)
        if api_key is None:
            return Denied(DenialReason.INVALID_API_KEY)
        set_api_key_context(api_key_id=api_key.id)

        decision = await self.rate_limiter.check(api_key.id, self.window_ms, api_key.hourly_request_limit)
        if not decision.allowed:
            return Denied(DenialReason.RATE_LIMIT, limit=decision.limit)

        result = await self.evaluator.evaluate(api_key, site_id)
        if isinstance(result, Authorized):
            add_site_attributes(result.site)
            set_api_key_context(site_domain=result.site.domain)
        return result

    def _record(self, outcome: str, reason: str = "none") -> None:
        if self.metrics is not None:
            self.metrics.record_authorization(outcome, reason)

    async def __call__(self, request: Request) -> Site:
        """FastAPI dependency: attach the authorized site to ``request.state``."""
        result = await self.authorize(request.headers, request.query_params.get("site_id"))
        if isinstance(result, Denied):
            raise StatsApiDenied(result)

        request.state.site = result.site
        return result.site
