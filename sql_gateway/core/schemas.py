from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr

TEST_MODE = "TEST"


# =========================
# CONNECTION
# =========================
class ConnectionParameters(BaseModel):
    """Everything needed to open one database session."""

    host: Optional[str] = None
    port: Optional[int] = None
    user: str = ""
    # SecretStr keeps the password out of repr() and log lines
    password: SecretStr = SecretStr("")
    options: Dict[str, Any] = {}


# =========================
# QUERY
# =========================
class QueryRequest(BaseModel):
    query: Optional[str] = None
    mode: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    encrypted_user: Optional[str] = None
    encrypted_password: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None

    # Anything else in the body is a driver option (schema, encrypt, ...)
    model_config = ConfigDict(extra="allow")

    @property
    def is_test(self) -> bool:
        return self.mode == TEST_MODE

    def driver_options(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})

    def connection_parameters(self, user: str, password: str) -> ConnectionParameters:
        return ConnectionParameters(
            host=self.host or None,
            port=self.port,
            user=user,
            password=SecretStr(password),
            options=self.driver_options(),
        )


class TestModeResponse(BaseModel):
    message: str = "Connection to proxy established"


# =========================
# ENCRYPTION
# =========================
class EncryptRequest(BaseModel):
    # Presence is checked in the endpoint so that a missing field is a 400
    user: Optional[str] = None
    password: Optional[str] = None


class EncryptResponse(BaseModel):
    encrypted_user: str = Field(serialization_alias="encryptedUser")
    encrypted_password: str = Field(serialization_alias="encryptedPassword")


# =========================
# ERRORS
# =========================
class ErrorBody(BaseModel):
    type: str
    message: str
    details: Dict[str, Any] = {}


class ErrorResponse(BaseModel):
    error: ErrorBody
