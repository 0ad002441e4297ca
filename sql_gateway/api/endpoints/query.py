import logging
from typing import Annotated, Any, Tuple

from fastapi import APIRouter, Depends, Request

from sql_gateway.core import database, schemas
from sql_gateway.core.database import DatabaseDriver, get_driver
from sql_gateway.core.errors import ConfigurationError, RequestValidationFailed
from sql_gateway.core.security import CipherLike, get_cipher

router = APIRouter(tags=["Query"])

cipher_dep = Annotated[CipherLike, Depends(get_cipher)]
driver_dep = Annotated[DatabaseDriver, Depends(get_driver)]

logger = logging.getLogger(__name__)


def resolve_credentials(
    payload: schemas.QueryRequest, cipher: CipherLike
) -> Tuple[str, str]:
    """Encrypted fields win over plaintext ones, anything absent becomes ''."""
    try:
        if payload.encrypted_user:
            user = cipher.decrypt(payload.encrypted_user)
        else:
            user = payload.user or ""

        if payload.encrypted_password:
            password = cipher.decrypt(payload.encrypted_password)
        else:
            password = payload.password or ""
    except ConfigurationError as error:
        # Reported as a bad request on the query path
        raise ConfigurationError(error.message, error.details, status_code=400)

    return user, password


ERROR_RESPONSES = {
    400: {"model": schemas.ErrorResponse},
    500: {"model": schemas.ErrorResponse},
}


@router.post("/", responses=ERROR_RESPONSES)
async def run_query(
    payload: schemas.QueryRequest,
    request: Request,
    cipher: cipher_dep,
    db_driver: driver_dep,
) -> Any:
    """
    Execute one statement in a fresh database session.
    TEST mode only proves the gateway is reachable, no session is opened.
    """
    if payload.is_test:
        return schemas.TestModeResponse()

    if not payload.query:
        raise RequestValidationFailed("Field 'query' is required")

    # Decryption failures stop here, before any database contact
    user, password = resolve_credentials(payload, cipher)
    params = payload.connection_parameters(user, password)

    config = request.app.state.settings
    rows = await database.execute(
        db_driver,
        params,
        payload.query,
        connect_timeout=config.DB_CONNECT_TIMEOUT,
        query_timeout=config.DB_QUERY_TIMEOUT,
    )
    logger.info(f"Query returned {len(rows)} row(s)")
    return {"data": rows}
