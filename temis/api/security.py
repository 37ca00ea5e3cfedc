import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from temis.api.model import Utilisateur
from temis.api.schema import TokenData
from temis.util.db.database import get_async_db
from temis.util.db.setting import settings

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Jeton facultatif : les lectures sont publiques, les écritures vérifient l'utilisateur dans les services
bearer = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def _non_autorise(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Jeton JWT signé portant l'email (``sub``) et l'identifiant de l'utilisateur."""
    claims = dict(data)
    duree = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims["exp"] = datetime.now(timezone.utc) + duree
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def verify_token(token: str) -> TokenData:
    try:
        claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        logger.warning(f"Jeton refusé : {str(e)}")
        raise _non_autorise("Token invalide ou expiré")
    if not claims.get("sub"):
        raise _non_autorise("Token invalide: email manquant")
    return TokenData(email=claims["sub"], user_id=claims.get("user_id"))


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: AsyncSession = Depends(get_async_db),
) -> Optional[Utilisateur]:
    """Utilisateur du jeton Bearer, ou None si la requête n'en porte pas.

    Un jeton présent mais invalide, ou désignant un compte inconnu ou
    désactivé, est refusé avec une 401.
    """
    if credentials is None:
        return None

    token_data = verify_token(credentials.credentials)
    user = (await db.execute(
        select(Utilisateur).where(Utilisateur.email == token_data.email)
    )).scalar_one_or_none()

    if user is None:
        raise _non_autorise("Utilisateur non trouvé")
    if not user.actif:
        raise _non_autorise("Compte utilisateur désactivé")
    return user


async def get_current_user_id(
    current_user: Optional[Utilisateur] = Depends(get_current_user),
) -> Optional[int]:
    return current_user.id if current_user is not None else None
