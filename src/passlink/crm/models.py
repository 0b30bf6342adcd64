"""CRM account and request models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Linkage custom fields written back onto CRM accounts
LINK_UUID = "custom_client_emirateid_uuid"
LINK_EMAIL = "custom_client_emirateid_email"
LINK_FULL_NAME = "custom_client_emirateid_fullname"
LINK_MOBILE = "custom_client_emirateid_mobile"
LINK_NATIONAL_ID = "custom_client_emirate_id"
LINK_NATIONALITY = "custom_client_emirateid_nationality"


class CRMAccount(BaseModel):
    """Account as returned by the CRM. Unknown fields are kept."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: int
    email: str = ""
    first_name: str = Field(default="", alias="firstName")
    last_name: str = Field(default="", alias="lastName")
    phone: str = ""
    country: str = ""
    enabled: bool = True
    verified: bool = False
    custom_fields: dict[str, Any] = Field(default_factory=dict, alias="customFields")


class RegistrationRequest(BaseModel):
    """Body of ``POST /users/new``."""

    model_config = ConfigDict(populate_by_name=True)

    first_name: str = Field(alias="firstName")
    last_name: str = Field(alias="lastName")
    phone: str
    email: str
    lead: bool = False
    password: str = Field(repr=False)
    send_welcome_email: bool = Field(default=True, alias="sendWelcomeEmail")
    country: str
    email_verified: bool = Field(default=True, alias="emailVerified")
    phone_verified: bool = Field(default=True, alias="phoneVerified")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class LinkStatus(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class CRMLoginOutcome:
    """Terminal success state of the account orchestration."""

    login_url: str = field(repr=False)
    account_id: int
    is_new_account: bool
    link_status: LinkStatus
