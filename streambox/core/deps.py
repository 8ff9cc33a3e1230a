from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, Query, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from streambox.core.config import settings
from streambox.core.gateway import PersistenceGateway
from streambox.modules.accounts.models import Account
from streambox.modules.delivery.service import StreamingGate
from streambox.modules.sales.service import PurchaseVerifier
from streambox.modules.uploads.service import UploadRegistrar

# auto_error=False so the token can also come from the query string (video players can't set headers)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_STR}/accounts/login", auto_error=False)


def get_gateway(request: Request) -> PersistenceGateway:
    return request.app.state.gateway

def get_verifier(request: Request) -> PurchaseVerifier:
    return request.app.state.verifier

def get_registrar(request: Request) -> UploadRegistrar:
    return request.app.state.registrar

def get_streaming_gate(request: Request) -> StreamingGate:
    return request.app.state.streaming_gate


def _account_id_from_token(token: str) -> Optional[UUID]:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    if payload.get("scope") != "access":
        return None
    try:
        return UUID(payload.get("sub") or "")
    except ValueError:
        return None


async def get_current_account(
    token_query: Optional[str] = Query(None, alias="token"),
    token_header: Optional[str] = Depends(oauth2_scheme),
    gateway: PersistenceGateway = Depends(get_gateway),
) -> Account:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    token = token_header or token_query
    if not token:
        raise credentials_exception

    account_id = _account_id_from_token(token)
    if account_id is None:
        raise credentials_exception

    account = await gateway.get_account(account_id)
    if account is None:
        raise credentials_exception
    return account


async def get_current_account_optional(
    token_query: Optional[str] = Query(None, alias="token"),
    token_header: Optional[str] = Depends(oauth2_scheme),
    gateway: PersistenceGateway = Depends(get_gateway),
) -> Optional[Account]:
    token = token_header or token_query
    if not token:
        return None
    account_id = _account_id_from_token(token)
    if account_id is None:
        return None
    return await gateway.get_account(account_id)
