"""
Domain logic for the gate.

- models: API keys, sites, users and the Authorized/Denied result types
- access_evaluator: the ordered site access policy
- authorization: the pipeline composing every gate into one decision

Only the models are re-exported here; adapters import them and the policy
modules import the adapters.
"""

from .models import ApiKey, Authorized, AuthorizationResult, Denied, DenialReason, Site, User

__all__ = [
    "ApiKey",
    "Authorized",
    "AuthorizationResult",
    "Denied",
    "DenialReason",
    "Site",
    "User",
]
