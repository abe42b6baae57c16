"""
OpenClaw Admin - Authentication
=================================
Single-password protection for the admin panel.

The panel can start containers and read gateway secrets, so once an
admin password is set every /api route (except /api/auth/*) needs a
token.

Security model:
- One admin password, stored as a bcrypt hash in <state_dir>/auth.json
- HS256 JWT issued on setup/login, signed with a per-install secret
- Tokens are read from "Authorization: Bearer <jwt>" or, for EventSource
  streams (which cannot set headers), from the "?token=" query parameter
- Until a password is set, all routes are open (first-run setup)
"""

import os
import json
import secrets
import bcrypt
from datetime import datetime, timedelta, timezone
from jose import jwt, JWTError
from fastapi import HTTPException, Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials


JWT_ALGORITHM = "HS256"
JWT_EXPIRATION_HOURS = 24
MIN_PASSWORD_LENGTH = 6

security = HTTPBearer(auto_error=False)


class AuthManager:
    """
    Password hash and JWT lifecycle.

    Attributes:
        auth_file: JSON file holding the password hash and JWT secret.
    """

    def __init__(self, state_dir: str, expiration_hours: int = JWT_EXPIRATION_HOURS):
        self.auth_file = os.path.join(state_dir, "auth.json")
        self.expiration_hours = expiration_hours

    def is_configured(self) -> bool:
        """True once a password hash has been stored."""
        if not os.path.exists(self.auth_file):
            return False
        try:
            return "password_hash" in self._load()
        except (json.JSONDecodeError, OSError):
            return False

    def setup_password(self, password: str, force: bool = False) -> str:
        """
        Store the admin password and return a fresh token.

        The JWT secret survives password changes (force=True) so existing
        sessions of other tabs keep working until they expire.

        Raises:
            RuntimeError: If a password exists and force is False.
            ValueError:   If the password is shorter than MIN_PASSWORD_LENGTH.
        """
        if self.is_configured() and not force:
            raise RuntimeError("Password already configured")

        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        jwt_secret = None
        if force and os.path.exists(self.auth_file):
            try:
                jwt_secret = self._load().get("jwt_secret")
            except (json.JSONDecodeError, OSError):
                jwt_secret = None

        data = {
            "password_hash": bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8"),
            "jwt_secret": jwt_secret or secrets.token_urlsafe(32),
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        self._save(data)
        return self._create_token(data["jwt_secret"])

    def verify_password(self, password: str) -> str | None:
        """Return a token for the right password, None otherwise."""
        if not self.is_configured():
            return None

        data = self._load()
        if bcrypt.checkpw(password.encode("utf-8"), data["password_hash"].encode("utf-8")):
            return self._create_token(data["jwt_secret"])
        return None

    def verify_token(self, token: str) -> bool:
        if not self.is_configured():
            return False
        try:
            jwt.decode(token, self._load()["jwt_secret"], algorithms=[JWT_ALGORITHM])
            return True
        except JWTError:
            return False

    # -- Internal helpers ------------------------------------------------------

    def _create_token(self, secret: str) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": "admin",
            "iat": now,
            "exp": now + timedelta(hours=self.expiration_hours),
        }
        return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)

    def _load(self) -> dict:
        with open(self.auth_file, "r", encoding="utf-8") as f:
            return json.load(f)

    def _save(self, data: dict) -> None:
        os.makedirs(os.path.dirname(self.auth_file), exist_ok=True)
        with open(self.auth_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.chmod(self.auth_file, 0o600)


def require_auth(auth_manager: AuthManager):
    """
    Build the FastAPI dependency that guards protected routes.

    Usage:
        auth = Depends(require_auth(auth_manager))
        @router.post("/install", dependencies=[auth])
    """
    async def _verify(
        request: Request,
        credentials: HTTPAuthorizationCredentials | None = Depends(security),
    ):
        if not auth_manager.is_configured():
            return True

        token = credentials.credentials if credentials else request.query_params.get("token")
        if not token:
            raise HTTPException(status_code=401, detail="Authentication required")

        if not auth_manager.verify_token(token):
            raise HTTPException(status_code=401, detail="Invalid or expired token")

        return True

    return _verify
