"""
Pydantic models for token endpoint responses.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict

from smart_client.constants import DEFAULT_TOKEN_TYPE


class AuthResult(BaseModel):
    """Token endpoint response of a successful code exchange or refresh."""

    model_config = ConfigDict(extra="allow")

    access_token: str
    token_type: str = DEFAULT_TOKEN_TYPE
    expires_in: int | None = None
    refresh_token: str | None = None
    patient: str | None = None
    scope: str | None = None
    id_token: str | None = None

    @classmethod
    def from_token_response(cls, response: dict[str, Any]) -> "AuthResult":
        """
        Create a result from a decoded token response body.

        Raises:
            ValueError: If the body carries no access token
        """
        if not response.get("access_token"):
            raise ValueError("Token response contains no access_token")
        return cls.model_validate(response)

    @property
    def subject_id(self) -> str | None:
        """Authenticated principal: the patient in context, else the fhirUser claim."""
        extra = self.model_extra or {}
        return self.patient or extra.get("fhirUser")
