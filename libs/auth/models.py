from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

# Supabase issues "authenticated" for ordinary signed-in users.
CUSTOMER_ROLES = frozenset({"customer", "authenticated"})
CUSTOMER_ROLE = "customer"
VENDOR_ROLES = frozenset({"owner", "staff"})
SERVICE_ROLE = "service_role"
STAFF_OVERRIDE_ROLES = frozenset({"admin", SERVICE_ROLE})


class AuthUser(BaseModel):
    """
    Represents an authenticated user from a Supabase-issued token.
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="sub")
    email: Optional[EmailStr] = None
    role: str = CUSTOMER_ROLE
    # Set for vendor accounts (owner/staff): the storefront they act for.
    storefront_id: Optional[str] = None

    @property
    def is_customer(self) -> bool:
        return self.role in CUSTOMER_ROLES

    @property
    def is_vendor(self) -> bool:
        return self.role in VENDOR_ROLES and bool(self.storefront_id)
