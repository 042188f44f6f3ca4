"""
Define functions/aliases for dependency injection
"""
from collections.abc import Generator
from typing import Annotated, TypeAlias
from sqlmodel import Session
from fastapi import Depends, Header, HTTPException, status

from core.db import get_engine


# Define db dependency
def get_db() -> Generator[Session, None, None]:
  with Session(get_engine()) as session:
    yield session


def get_user_id(
    x_user_id: Annotated[str | None, Header()] = None
) -> str:
  """
  The caller is authenticated upstream; the gateway forwards
  the resolved user id in the X-User-Id header.
  """
  if not x_user_id:
    raise HTTPException(
      status_code=status.HTTP_401_UNAUTHORIZED,
      detail="Missing X-User-Id header"
    )
  return x_user_id


SessionDep: TypeAlias = Annotated[Session, Depends(get_db)]
UserIdDep: TypeAlias = Annotated[str, Depends(get_user_id)]
