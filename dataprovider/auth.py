import time
from typing import Any, Dict, Optional, Union

import jwt
from flask import Flask, abort, g, request
from pydantic import BaseModel, ValidationError

from .config import Settings, get_settings
from .types import Meta


class JWTClaims(BaseModel):
    """Normalized JWT claims; `sub` is the acting user, `tenant_id` scopes every query."""

    sub: str
    name: Optional[str] = None
    role: Optional[str] = None
    tenant_id: Optional[Union[int, str]] = None
    exp: int


class AuthService:
    """Class-based JWT auth service handling guard and claims access."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    def _decode_jwt(self, token: str) -> dict:
        """Decode and validate a JWT (HS256)."""
        options = {"require": ["exp"], "verify_exp": True}
        kwargs: Dict[str, Any] = {"algorithms": ["HS256"]}
        if self.settings.jwt_issuer:
            kwargs["issuer"] = self.settings.jwt_issuer
        if self.settings.jwt_audience:
            kwargs["audience"] = self.settings.jwt_audience
        return jwt.decode(token, self.settings.jwt_secret, options=options, **kwargs)

    def default_claims(self) -> dict:
        # Local dev identity, scoped to DEV_TENANT_ID when set
        model = JWTClaims(
            sub="devuser@example.com",
            name="Dev User",
            role="developer",
            tenant_id=self.settings.dev_tenant_id,
            exp=int(time.time()) + 3600,
        )
        return model.model_dump()

    def current_claims(self) -> dict:
        """Access JWT claims for this request (fallback to defaults in dev)."""
        return getattr(g, "claims", None) or self.default_claims()

    def current_meta(self) -> Meta:
        claims = self.current_claims()
        return Meta(tenant_id=claims.get("tenant_id"), user_id=claims.get("sub"))

    def init_app(self, server: Flask) -> None:
        """Register a before_request auth guard on the Flask server."""

        @server.before_request
        def require_auth():
            path = request.path or ""
            if path == "/health":
                return None

            if self.settings.disable_auth:
                g.claims = self.default_claims()
                return None

            auth = request.headers.get("Authorization", "")
            if not auth.startswith("Bearer "):
                abort(401, description="Missing or invalid Authorization header")

            token = auth.split(" ", 1)[1].strip()
            try:
                decoded = self._decode_jwt(token)
                claims = JWTClaims.model_validate(decoded).model_dump()
            except (jwt.PyJWTError, ValidationError) as e:
                abort(401, description=f"Invalid token: {e}")

            g.claims = claims
            return None
