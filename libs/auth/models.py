from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class AuthUser(BaseModel):
    """
    Identity decoded from a bearer token issued by the identity provider.
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="sub")
    email: Optional[EmailStr] = None
    role: str = "customer"  # customer | vendor | service_role

    @property
    def is_vendor(self) -> bool:
        return self.role in ("vendor", "service_role")
