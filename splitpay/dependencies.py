from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from splitpay.config import settings
from splitpay.models import User, get_db

security = HTTPBearer(auto_error=False)


def get_current_buyer(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[Session, Depends(get_db)],
) -> User | None:
    """Signed-in buyer from the bearer token; guests check out without one."""
    if not credentials:
        return None
    try:
        payload = jwt.decode(credentials.credentials, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        sub = payload.get("sub")
        if sub is None or payload.get("type") not in {None, "access"}:
            return None
        user_id = int(sub)
    except (JWTError, ValueError):
        return None
    return db.query(User).filter(User.id == user_id).first()
