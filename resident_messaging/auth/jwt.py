from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Generator, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session, joinedload

from ..config import SessionLocal, settings
from ..models.models import User

# Tokens are issued by the identity provider; this service only verifies them.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/token")


def create_access_token(claims: Dict[str, Any], expires_minutes: Optional[int] = None) -> str:
    """Sign ``claims`` as an access token. Used by tests and local tooling."""
    lifetime = timedelta(minutes=expires_minutes or settings.access_token_expire_minutes)
    payload = {"type": "access", **claims, "exp": datetime.now(timezone.utc) + lifetime}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Dict[str, Any]:
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def user_id_from_token(token: str) -> int:
    """Return the subject of a valid access token or raise 401."""
    try:
        claims = decode_token(token)
    except JWTError as exc:
        raise _unauthorized() from exc
    if claims.get("type", "access") != "access":
        raise _unauthorized()
    subject = claims.get("sub")
    if subject is None or not str(subject).isdigit():
        raise _unauthorized()
    return int(subject)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    user_id = user_id_from_token(token)
    user = db.query(User).options(joinedload(User.roles)).filter(User.id == user_id).first()
    if user is None or not user.is_active:
        raise _unauthorized()
    return user
