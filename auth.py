"""
Request identity.

Authentication happens upstream; by the time a request reaches these routes the
gateway has put the caller's id and role into X-User-Id / X-User-Role.
"""

from typing import Literal, Optional

from fastapi import Depends, Header, HTTPException
from pydantic import BaseModel

Role = Literal["customer", "seller", "admin"]


class CurrentUser(BaseModel):
    id: str
    role: Role = "customer"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_seller(self) -> bool:
        return self.role == "seller"


def get_current_user(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> CurrentUser:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not authorized to access this route")
    role = (x_user_role or "customer").lower()
    if role not in ("customer", "seller", "admin"):
        raise HTTPException(status_code=403, detail=f"User role '{role}' is not recognised")
    return CurrentUser(id=x_user_id, role=role)


def require_roles(*roles: str):
    def dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail=f"User role '{user.role}' is not authorized to access this route")
        return user
    return dependency
