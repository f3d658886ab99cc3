from typing import Annotated, NoReturn

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.db.session import get_db_session
from jobqueue.domain.errors import JobError

# Dependency for DB session
DbSession = Annotated[AsyncSession, Depends(get_db_session)]

# Caller identity; trusted as given.
OwnerId = Annotated[str, Header(alias="X-Owner-ID", min_length=1)]


def raise_http(e: JobError) -> NoReturn:
    raise HTTPException(
        status_code=e.status_code,
        detail={"error_code": str(e.code), "message": str(e)},
    ) from e
