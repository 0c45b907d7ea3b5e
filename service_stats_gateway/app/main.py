"""
Stats API gateway service.

Runs the authorization pipeline in front of the statistics endpoints and
exposes the resolved site to downstream handlers via ``request.state.site``.
"""

import time
from typing import Callable, Dict, Optional

from fastapi import Depends, Request
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.errors import CollaboratorUnavailableError, ConfigurationError
from .adapters.directory import AccessDirectory
from .adapters.memory_directory import InMemoryAccessDirectory
from .adapters.postgres_directory import PostgresAccessDirectory
from .domain.access_evaluator import AccessEvaluator
from .domain.authorization import StatsApiAuthorizer, StatsApiDenied
from .domain.models import Site
from .ratelimit.fixed_window import (
    FixedWindowRateLimiter,
    InMemoryRateLimitStore,
    RateLimitStore,
    RedisRateLimitStore,
)


class StatsGatewayService(BaseService):
    """Stats API gateway service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None,
                 directory: Optional[AccessDirectory] = None,
                 rate_limit_store: Optional[RateLimitStore] = None,
                 clock: Callable[[], float] = time.time):
        super().__init__("gateway", 8000, config)
        self.directory = directory if directory is not None else self._build_directory()
        self.rate_limit_store = rate_limit_store if rate_limit_store is not None else self._build_rate_limit_store()
        self.rate_limiter = FixedWindowRateLimiter(self.rate_limit_store, clock=clock, metrics=self.metrics)
        self.access_evaluator = AccessEvaluator(self.directory, feature=self.config.stats_api_feature)
        self.authorizer = StatsApiAuthorizer(
            self.directory,
            self.rate_limiter,
            self.access_evaluator,
            window_ms=self.config.rate_limit_window_seconds * 1000,
            metrics=self.metrics,
        )

        @self.app.on_event("startup")
        async def _startup():
            if isinstance(self.directory, PostgresAccessDirectory):
                await self.directory.start()

        @self.app.on_event("shutdown")
        async def _shutdown():
            if isinstance(self.directory, PostgresAccessDirectory):
                await self.directory.stop()
            if isinstance(self.rate_limit_store, RedisRateLimitStore):
                await self.rate_limit_store.close()

        @self.app.exception_handler(StatsApiDenied)
        async def stats_api_denied_handler(request: Request, exc: StatsApiDenied):
            """Render denials as ``{"error": message}``."""
            return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

        self._setup_stats_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.gateway_service = self

    def _build_directory(self) -> AccessDirectory:
        backend = self.config.directory_backend
        if backend == "memory":
            return InMemoryAccessDirectory(super_admin_user_ids=self.config.super_admin_user_ids)
        if backend == "postgres":
            return PostgresAccessDirectory(
                self.config.postgres_dsn,
                api_key_secret=self.config.api_key_secret,
                super_admin_user_ids=self.config.super_admin_user_ids,
            )
        raise ConfigurationError(f"Unknown directory backend: {backend}", details={"backend": backend})

    def _build_rate_limit_store(self) -> RateLimitStore:
        backend = self.config.rate_limit_backend
        if backend == "memory":
            return InMemoryRateLimitStore(sweep_interval=self.config.rate_limit_sweep_interval)
        if backend == "redis":
            return RedisRateLimitStore(self.config.redis_url)
        raise ConfigurationError(f"Unknown rate limit backend: {backend}", details={"backend": backend})

    async def _check_dependencies(self) -> Dict[str, str]:
        dependencies: Dict[str, str] = {}
        if isinstance(self.rate_limit_store, RedisRateLimitStore):
            try:
                await self.rate_limit_store.ping()
                dependencies["redis"] = "ok"
            except Exception as e:
                self.logger.warning("Redis health check failed", error=str(e))
                dependencies["redis"] = "error"
        if isinstance(self.directory, PostgresAccessDirectory):
            try:
                dependencies["postgres"] = "ok" if await self.directory.ping() else "error"
            except CollaboratorUnavailableError as e:
                self.logger.warning("Postgres health check failed", error=e.message)
                dependencies["postgres"] = "error"
        return dependencies

    def _setup_stats_routes(self):
        """Set up stats routes guarded by the authorizer."""

        @self.app.get("/")
        async def root():
            return {"service": "gateway", "message": "Stats API gateway"}

        @self.app.get("/api/v1/stats/site")
        async def get_authorized_site(request: Request, _: Site = Depends(self.authorizer)):
            """Describe the site the caller was authorized for."""
            site: Site = request.state.site
            return {
                "site_id": site.id,
                "domain": site.domain,
            }


def create_app():
    """Create FastAPI application."""
    service = StatsGatewayService()
    return service.app


if __name__ == "__main__":
    service = StatsGatewayService()
    service.run()
