from datetime import datetime

from jose import jwt
from jose.exceptions import JWTError

from .errors import ExpiredToken, InvalidToken

ALGORITHM = "HS256"
REQUIRED_CLAIMS = ["bookingId", "eventId", "userId", "organizerId", "seatNumbers", "ticketType"]


def sign_redemption_token(claims: dict, secret: str, expires_at: datetime, issued_at: datetime) -> str:
    payload = dict(claims)
    payload["iat"] = int(issued_at.timestamp())
    payload["exp"] = int(expires_at.timestamp())
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def verify_redemption_token(token: str, secret: str, now: datetime) -> dict:
    # expiry is checked against the injected clock, not the library's wall clock
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM], options={"verify_exp": False, "verify_iat": False})
    except JWTError:
        raise InvalidToken("token signature is invalid")

    exp = payload.get("exp")
    if exp is None:
        raise InvalidToken("token has no expiry")
    if now.timestamp() > float(exp):
        raise ExpiredToken("token has expired")

    for k in REQUIRED_CLAIMS:
        if k not in payload:
            raise InvalidToken(f"token is missing claim {k}")

    return payload
