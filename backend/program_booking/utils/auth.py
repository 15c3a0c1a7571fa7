from datetime import datetime, timedelta, timezone
from typing import Sequence

import jwt
from jwt import InvalidTokenError

STAFF_ROLE = "staff"


def create_staff_token(
    *,
    subject: str,
    secret: str,
    role: str = STAFF_ROLE,
    algorithm: str = "HS256",
    expires_delta: timedelta | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(hours=8))
    payload = {"sub": subject, "role": role, "iat": now, "exp": exp}
    return jwt.encode(payload, secret, algorithm=algorithm)


def decode_staff_token(
    token: str,
    *,
    secret: str,
    algorithms: Sequence[str],
) -> str:
    """Return the token subject. Raises ValueError for bad tokens, PermissionError for non-staff roles."""
    try:
        payload = jwt.decode(token, secret, algorithms=list(algorithms))
    except InvalidTokenError as exc:  # includes ExpiredSignatureError
        raise ValueError("invalid token") from exc

    sub = payload.get("sub")
    if not isinstance(sub, str) or not sub:
        raise ValueError("token missing sub")
    if payload.get("role") != STAFF_ROLE:
        raise PermissionError("token is not a staff token")
    return sub
