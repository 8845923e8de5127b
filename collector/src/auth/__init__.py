"""
Authentication package.

Exports the BearerAuth dependency class and token parsing utilities
for use by the operator API route handlers.

CHANGELOG:
- 2026-03-04: Operator tokens replace device tokens (STORY-031)
- 2026-02-14: Initial creation (STORY-007)

TODO:
- None
"""

from collector.src.auth.bearer import BearerAuth, parse_operator_tokens, verify_bearer_token

__all__ = ["BearerAuth", "parse_operator_tokens", "verify_bearer_token"]
