"""
Stats API gateway package.

The gateway fronts statistics requests, enforcing:
- Credential extraction: bearer API keys from the Authorization header
- Rate limiting: fixed hourly windows per API key, in-process or Redis
- Site access: super-admin override, subscription lock, feature
  entitlement and membership, in that order

Structure:
- app.main: FastAPI app, routes, and dependency wiring.
- app.auth: Bearer token extraction.
- app.ratelimit: Fixed-window limiter and counter stores.
- app.adapters: Account directory contract and implementations.
- app.domain: Models, access policy and the authorization pipeline.
"""
