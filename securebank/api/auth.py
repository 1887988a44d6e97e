"""
Authentication endpoints
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request

from ..service import BankingSystem
from .dependencies import client_ip, get_banking_system, get_token, user_agent
from .schemas import LoginRequest


router = APIRouter()


@router.post("/login")
def login(
    body: LoginRequest,
    request: Request,
    system: BankingSystem = Depends(get_banking_system)
) -> Dict[str, Any]:
    """Exchange credentials for a session token"""
    result = system.login(body.identifier, body.password,
                          client_ip(request), user_agent(request))
    return {"success": True, **result.to_dict()}


@router.post("/logout")
def logout(
    token: Optional[str] = Depends(get_token),
    system: BankingSystem = Depends(get_banking_system)
) -> Dict[str, Any]:
    """Revoke the presented session token"""
    return {"success": system.logout(token)}


@router.get("/verify")
def verify(
    token: Optional[str] = Depends(get_token),
    system: BankingSystem = Depends(get_banking_system)
) -> Dict[str, Any]:
    """Return the account behind a valid session token"""
    view = system.verify_session(token)
    return {"valid": True, "user": view.to_dict()}
