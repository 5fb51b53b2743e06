"""Security context models for gitfix."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class Principal(BaseModel):
    """The authenticated caller of an outbound or approval operation.

    Authentication itself happens outside gitfix; callers pass the identity
    their auth provider resolved.
    """

    user_id: str = Field(..., description="Authenticated user")
    organization_id: Optional[str] = Field(default=None, description="Active organization")
