from typing import AsyncIterator

from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from pydantic import BaseModel
import logging

from ..db import SessionLocal
from ..repository import CalendarRepository, UserSession
from ..settings import settings
from ..stores.base import TableStore
from ..stores.sql import SqlStore
from ..stores.supabase import SupabaseStore

router = APIRouter(prefix="/auth", tags=["auth"])

logger = logging.getLogger(__name__)
# Tokens are issued by the hosted auth service; this service only verifies them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)


class User(BaseModel):
	user_id: str
	email: str | None = None
	role: str | None = None


def decode_access_token(token: str) -> dict:
	return jwt.decode(
		token,
		settings.supabase_jwt_secret,
		algorithms=[settings.jwt_algorithm],
		audience=settings.jwt_audience,
	)


def get_current_session(token: str | None = Depends(oauth2_scheme)) -> UserSession:
	credentials_exception = HTTPException(
		status_code=401,
		detail="Could not validate credentials",
		headers={"WWW-Authenticate": "Bearer"},
	)
	if not token:
		raise credentials_exception
	try:
		payload = decode_access_token(token)
	except JWTError as err:
		logger.info("Rejected access token: %s", err)
		raise credentials_exception
	user_id: str | None = payload.get("sub")
	if not user_id:
		raise credentials_exception
	return UserSession(user_id=user_id, access_token=token)


def open_store(session: UserSession) -> TableStore:
	if settings.store_backend == "supabase":
		return SupabaseStore(session.access_token)
	return SqlStore(SessionLocal)


async def get_repository(session: UserSession = Depends(get_current_session)) -> AsyncIterator[CalendarRepository]:
	store = open_store(session)
	try:
		yield CalendarRepository(store, session)
	finally:
		await store.aclose()


@router.get("/me", response_model=User)
async def me(session: UserSession = Depends(get_current_session)):
	payload = decode_access_token(session.access_token or "")
	return User(user_id=session.user_id, email=payload.get("email"), role=payload.get("role"))
