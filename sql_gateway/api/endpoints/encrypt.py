from typing import Annotated

from fastapi import APIRouter, Depends

from sql_gateway.core import schemas
from sql_gateway.core.errors import RequestValidationFailed
from sql_gateway.core.security import CipherLike, get_cipher

router = APIRouter(tags=["Encryption"])

cipher_dep = Annotated[CipherLike, Depends(get_cipher)]


@router.post(
    "/encrypt",
    response_model=schemas.EncryptResponse,
    responses={
        400: {"model": schemas.ErrorResponse},
        500: {"model": schemas.ErrorResponse},
    },
)
async def encrypt_credentials(payload: schemas.EncryptRequest, cipher: cipher_dep):
    # Validate both fields before touching the cipher
    missing = [field for field in ("user", "password") if not getattr(payload, field)]
    if missing:
        raise RequestValidationFailed(
            f"Missing required field(s): {', '.join(missing)}",
            {"missing": missing},
        )

    return schemas.EncryptResponse(
        encrypted_user=cipher.encrypt(payload.user),
        encrypted_password=cipher.encrypt(payload.password),
    )
