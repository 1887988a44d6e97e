"""
Shared request dependencies: the banking system and the caller's token
"""

import threading
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..service import BankingSystem


security = HTTPBearer(auto_error=False)

_banking_system: Optional[BankingSystem] = None
_init_lock = threading.Lock()


def get_banking_system() -> BankingSystem:
    """Process-wide banking system, created (and its admin bootstrapped) on first use"""
    global _banking_system
    with _init_lock:
        if _banking_system is None:
            system = BankingSystem()
            system.bootstrap_admin()
            _banking_system = system
        return _banking_system


def get_token(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Optional[str]:
    """Bearer token from the Authorization header; validation happens in the service"""
    if credentials is None:
        return None
    return credentials.credentials


def client_ip(request: Request) -> Optional[str]:
    # Peer address only; X-Forwarded-For is client-controlled
    return request.client.host if request.client else None


def user_agent(request: Request) -> Optional[str]:
    return request.headers.get("user-agent")
