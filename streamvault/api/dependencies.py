from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from streamvault.core.security import owner_from_token
from streamvault.models import Job, get_db
from streamvault.services.job_store import JobStore

security = HTTPBearer()


def get_current_owner(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> str:
    """Resolve the bearer token to the requester's opaque owner id."""
    owner_id = owner_from_token(credentials.credentials)
    if owner_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return owner_id


CurrentOwner = Annotated[str, Depends(get_current_owner)]
DatabaseSession = Annotated[Session, Depends(get_db)]


def verify_job_ownership(job_id: UUID, owner_id: str, db: Session) -> Job:
    """Raises JobNotFound (404) for both missing and foreign jobs."""
    return JobStore(db).load_owned(job_id, owner_id)
