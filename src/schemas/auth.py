"""Authentication schemas for JWT tokens and viewer context."""

from pydantic import BaseModel, ConfigDict, Field


class UserContext(BaseModel):
    """Authenticated caller extracted from a verified JWT.

    ``user_id`` is the account ID used as ``viewer_user_id`` in visibility
    checks and as ``account_id`` when mutating profiles.
    """

    model_config = ConfigDict(from_attributes=True)

    user_id: str = Field(description="Account ID (from JWT sub claim)")
    email: str | None = Field(default=None, description="User's email address if available")
    role: str | None = Field(default=None, description="User's role (e.g., 'authenticated')")


class TokenPayload(BaseModel):
    """Claims of a Supabase-issued JWT that this service reads."""

    model_config = ConfigDict(from_attributes=True)

    sub: str = Field(description="Subject - the account ID")
    email: str | None = Field(default=None, description="User's email address")
    role: str | None = Field(default=None, description="User's role")
    exp: int = Field(description="Expiration timestamp (Unix epoch)")
    iat: int = Field(description="Issued at timestamp (Unix epoch)")

    def to_user_context(self) -> UserContext:
        """Convert token payload to UserContext."""
        return UserContext(user_id=self.sub, email=self.email, role=self.role)
