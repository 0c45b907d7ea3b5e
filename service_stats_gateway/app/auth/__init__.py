"""
Credential handling for the Stats API gate.

Exposes the bearer token extractor used as the first gate of the
authorization pipeline.
"""

from .bearer import extract_bearer_token, BEARER_PREFIX

__all__ = ["extract_bearer_token", "BEARER_PREFIX"]
