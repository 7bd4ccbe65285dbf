"""
Typed provider payloads.

Token, refresh and user-info responses are validated at the boundary so
nothing loosely typed flows into the lifecycle manager. A payload that
does not fit raises ProviderResponseError.
"""

from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.credentials.errors import ProviderResponseError

DEFAULT_EXPIRES_IN_SECONDS = 3600

T = TypeVar("T", bound=BaseModel)


class TokenResponse(BaseModel):
    """Authorization-code exchange result."""

    model_config = ConfigDict(extra="ignore", hide_input_in_errors=True)

    access_token: str = Field(min_length=1, repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    expires_in: int = Field(default=DEFAULT_EXPIRES_IN_SECONDS, gt=0)
    scope: Optional[str] = None
    token_type: str = "Bearer"

    @field_validator("refresh_token")
    @classmethod
    def _empty_refresh_token_is_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None

    def granted_scopes(self, separator: str = " ") -> List[str]:
        if not self.scope:
            return []
        return [s for s in self.scope.replace(",", separator).split(separator) if s]


class RefreshResponse(BaseModel):
    """Refresh-token grant result. refresh_token is set only if the provider rotated it."""

    model_config = ConfigDict(extra="ignore", hide_input_in_errors=True)

    access_token: str = Field(min_length=1, repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    expires_in: int = Field(default=DEFAULT_EXPIRES_IN_SECONDS, gt=0)
    token_type: str = "Bearer"

    @field_validator("refresh_token")
    @classmethod
    def _empty_refresh_token_is_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None


class ProviderUserInfo(BaseModel):
    """Account identity at the provider, normalized across providers."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(validation_alias=AliasChoices("id", "sub"))
    email: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("email", "mail", "userPrincipalName"),
    )
    name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("name", "displayName", "localizedFirstName"),
    )

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value) if value is not None else value


def parse_payload(model: Type[T], payload: Any, operation: str) -> T:
    """Validate a provider JSON payload or raise ProviderResponseError."""
    if not isinstance(payload, dict):
        raise ProviderResponseError(f"Provider {operation} response is not a JSON object")
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise ProviderResponseError(
            f"Provider {operation} response has unexpected shape (fields: {', '.join(fields)})"
        ) from None


def provider_error_code(payload: Dict[str, Any]) -> Optional[str]:
    """Extract the OAuth2 error code without any descriptive text that might echo input."""
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        error = error.get("code") or error.get("type")
    return str(error) if error else None
