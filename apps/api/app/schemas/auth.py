"""Authentication-related Pydantic schemas."""

from uuid import UUID

from pydantic import BaseModel


class UserSession(BaseModel):
    """
    Full session context for authenticated requests.

    Returned by the get_current_session dependency.
    """
    user_id: UUID
    org_id: UUID
    email: str
    display_name: str
    is_activator: bool = False
