"""
Access control

Resolves the bearer credential to the calling user and checks roles. Tokens
are issued elsewhere; here a token is only looked up on the user record.
"""
import logging
from typing import Any, Dict, Literal, Optional, Union

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from database import get_db, serialize
from errors import Forbidden, Unauthenticated, ValidationFailed

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class Principal(BaseModel):
    id: str
    role: Literal["customer", "vendor"]
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[Union[Dict[str, Any], str]] = None


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> Principal:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise Unauthenticated("Access denied. No token provided or invalid format.")
    user = get_db()["user"].find_one({"api_token": credentials.credentials})
    if not user:
        raise Unauthenticated("Invalid token.")
    if not user.get("is_active", True):
        raise Unauthenticated("Account is deactivated.")
    user = serialize(user)
    return Principal(**{k: user.get(k) for k in Principal.model_fields})


def require_role(*roles: str):
    def checker(principal: Principal = Depends(get_current_user)) -> Principal:
        if principal.role not in roles:
            logger.info("Role %s refused, needs %s", principal.role, roles)
            raise Forbidden(f"Access denied. Required role: {' or '.join(roles)}")
        return principal
    return checker


def find_vendor_profile(principal: Principal) -> Optional[dict]:
    if principal.role != "vendor":
        return None
    return get_db()["vendorprofile"].find_one({"user_id": principal.id})


def get_vendor_profile(principal: Principal) -> dict:
    profile = find_vendor_profile(principal)
    if profile is None:
        raise ValidationFailed("Vendor profile not found")
    return profile
