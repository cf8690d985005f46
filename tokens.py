from dataclasses import dataclass
from typing import Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings


class TokenExpired(Exception):
    pass


class TokenInvalid(Exception):
    pass


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    role: str


def _serializer(secret: Optional[str] = None) -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(secret or settings.token_secret, salt="auth-token")


def generate_token(user_id: int, role: str, *, secret: Optional[str] = None) -> str:
    return _serializer(secret).dumps({"u": user_id, "r": role})


def verify_token(
    token: str,
    *,
    max_age_hours: Optional[int] = None,
    secret: Optional[str] = None,
) -> TokenClaims:
    if max_age_hours is None:
        max_age_hours = get_settings().token_max_age_hours
    serializer = _serializer(secret)
    try:
        data = serializer.loads(token, max_age=max_age_hours * 3600)
    except SignatureExpired as exc:
        raise TokenExpired("Token has expired") from exc
    except BadSignature as exc:
        raise TokenInvalid("Token signature is invalid") from exc

    if not isinstance(data, dict) or not isinstance(data.get("u"), int):
        raise TokenInvalid("Token payload is malformed")
    return TokenClaims(user_id=data["u"], role=str(data.get("r", "user")))
