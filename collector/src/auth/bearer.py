"""
Operator bearer tokens for the operator API.

OPERATOR_TOKENS binds each token to the operator who holds it::

    OPERATOR_TOKENS="7f3c...:alice,91ab...:night-shift"

The operator name is what an alert resolution records as ``resolved_by``,
so a token always resolves to exactly one operator:

- entries without a colon, or with an empty token or name, are skipped;
- a token listed twice keeps its first operator;
- the name may itself contain colons (only the first one separates).

Verification compares the presented token with every registered token via
secrets.compare_digest and does not stop at the first match.

CHANGELOG:
- 2026-03-05: Duplicate tokens keep their first operator; full-map comparison
- 2026-03-04: Map tokens to operator names (STORY-031)
- 2026-02-14: Initial creation (STORY-009)

TODO:
- None
"""

import logging
import secrets

from fastapi import HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

logger = logging.getLogger(__name__)

_CHALLENGE = {"WWW-Authenticate": "Bearer"}


def parse_operator_tokens(raw: str) -> dict[str, str]:
    """Parse OPERATOR_TOKENS into a token -> operator mapping.

    Args:
        raw: Comma-separated ``token:operator`` entries.

    Returns:
        dict[str, str]: Mapping of token -> operator name (may be empty).
    """
    token_map: dict[str, str] = {}
    for position, entry in enumerate((raw or "").split(","), start=1):
        token, sep, operator = entry.strip().partition(":")
        token, operator = token.strip(), operator.strip()
        if not sep:
            if token:
                logger.warning("OPERATOR_TOKENS entry %d has no ':' separator, skipped", position)
            continue
        if not token or not operator:
            logger.warning("OPERATOR_TOKENS entry %d has an empty token or name, skipped", position)
            continue
        if token in token_map:
            logger.warning(
                "OPERATOR_TOKENS entry %d repeats a token of %s, skipped",
                position,
                token_map[token],
            )
            continue
        token_map[token] = operator
    return token_map


def verify_bearer_token(token: str, token_map: dict[str, str]) -> str | None:
    """Return the operator bound to *token*, or None when it is not registered."""
    if not token:
        return None
    presented = token.encode("utf-8")
    matched: str | None = None
    for registered, operator in token_map.items():
        if secrets.compare_digest(presented, registered.encode("utf-8")) and matched is None:
            matched = operator
    return matched


class BearerAuth:
    """Operator authentication dependency for route handlers.

    Args:
        token_map: Mapping of valid token -> operator name.
    """

    def __init__(self, token_map: dict[str, str]) -> None:
        self.token_map = token_map
        self.scheme = HTTPBearer(auto_error=False)

    @classmethod
    def from_env_value(cls, raw: str) -> "BearerAuth":
        """Build from the raw OPERATOR_TOKENS value.

        Raises:
            RuntimeError: If no entry yields a usable token.
        """
        token_map = parse_operator_tokens(raw)
        if not token_map:
            raise RuntimeError(
                "OPERATOR_TOKENS parsed but contains no valid token:operator entries"
            )
        logger.info("Loaded %d operator token(s)", len(token_map))
        return cls(token_map)

    async def verify(self, request: Request) -> str:
        """Return the operator authenticated by the request's bearer token.

        Raises:
            HTTPException: 401 when the header is missing or the token unknown.
        """
        credentials: HTTPAuthorizationCredentials | None = await self.scheme(request)
        if credentials is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Missing authorization credentials.",
                headers=_CHALLENGE,
            )

        operator = verify_bearer_token(credentials.credentials, self.token_map)
        if operator is None:
            logger.warning("Rejected bearer token on %s %s", request.method, request.url.path)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or expired token.",
                headers=_CHALLENGE,
            )
        return operator
