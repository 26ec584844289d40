"""
Shared Pydantic models for the sign-in API.
"""

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# REQUEST MODELS
# =============================================================================

class TelegramCredentials(BaseModel):
    """Fields posted by the Telegram login widget."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[Union[int, str]] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None
    photo_url: Optional[str] = None
    auth_date: Optional[Union[int, str]] = None
    hash: Optional[str] = None
    callback_url: Optional[str] = Field(default=None, alias="callbackUrl")


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class ProviderResponse(BaseModel):
    id: str
    name: str
    type: str
    signin_url: str
    callback_url: str


class ProvidersResponse(BaseModel):
    providers: list[ProviderResponse]
    signin_page: str


class SignInResponse(BaseModel):
    ok: bool = True
    url: str


class AuthorizationUrlResponse(BaseModel):
    url: str


class ConnectionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    username: str = ""
    image: str = ""
    has_linked_solana: bool = Field(default=False, alias="hasLinkedSolana")


class SessionUserResponse(BaseModel):
    id: str
    name: Optional[str] = None
    image: Optional[str] = None
    connections: dict[str, ConnectionResponse] = Field(default_factory=dict)


class SessionResponse(BaseModel):
    user: SessionUserResponse
    expires: Optional[str] = None
