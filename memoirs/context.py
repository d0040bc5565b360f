"""
Request-scoped viewer identity passed explicitly into service functions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from memoirs.db import DbClient, ProfileRecord
from memoirs.errors import (
    AuthenticationRequired,
    ProfileSetupRequired,
    VerificationRequired,
)
from memoirs.visibility import allowed_visibility


@dataclass(frozen=True)
class ViewerContext:
    user_id: str
    profile: Optional[ProfileRecord] = None

    @property
    def relationship(self) -> Optional[str]:
        return self.profile.relationship if self.profile else None

    @property
    def is_verified(self) -> bool:
        return bool(self.profile and self.profile.is_verified)

    def allowed_visibility(self) -> tuple[str, ...]:
        if self.profile is None:
            raise ProfileSetupRequired("Complete your profile to continue")
        return allowed_visibility(self.relationship)

    def require_member(self) -> "ViewerContext":
        """Raise unless the viewer has a complete, verified profile."""
        if self.profile is None or not self.profile.relationship:
            raise ProfileSetupRequired("Complete your profile to continue")
        if not self.profile.is_verified:
            raise VerificationRequired("Your family membership is awaiting verification")
        return self


def load_viewer(db: DbClient, user_id: Optional[str]) -> ViewerContext:
    if not user_id:
        raise AuthenticationRequired("Sign in to continue")
    return ViewerContext(user_id=user_id, profile=db.get_profile(user_id))
