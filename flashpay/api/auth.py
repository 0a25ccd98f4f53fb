"""
Authentication endpoints
"""

from fastapi import APIRouter, Depends

from .deps import FlashPaySystem, get_current_principal, get_system
from .schemas import AccountResponse, AuthResponse, LoginRequest, RefreshTokenRequest, RegisterRequest
from ..accounts import AccountRole
from ..exceptions import InvalidOperation
from ..tokens import Principal


router = APIRouter()


@router.post("/register", response_model=AuthResponse, status_code=201)
def register(
    request: RegisterRequest,
    system: FlashPaySystem = Depends(get_system)
):
    """Register an account and open its first session"""
    try:
        role = AccountRole(request.role.strip().upper())
    except ValueError:
        raise InvalidOperation(f"Unknown account role: {request.role}")

    result = system.auth_service.register(
        first_name=request.first_name,
        last_name=request.last_name,
        email=request.email,
        password=request.password,
        document=request.document,
        role=role,
        balance=request.balance,
        device_info=request.device_info
    )
    return AuthResponse.from_result(result)


@router.post("/login", response_model=AuthResponse)
def login(
    request: LoginRequest,
    system: FlashPaySystem = Depends(get_system)
):
    """Authenticate with email and password"""
    result = system.auth_service.login(request.email, request.password, request.device_info)
    return AuthResponse.from_result(result)


@router.post("/refresh", response_model=AuthResponse)
def refresh(
    request: RefreshTokenRequest,
    system: FlashPaySystem = Depends(get_system)
):
    """Exchange a refresh token for a new access token"""
    result = system.auth_service.refresh(request.refresh_token)
    return AuthResponse.from_result(result)


@router.post("/logout")
def logout(
    request: RefreshTokenRequest,
    system: FlashPaySystem = Depends(get_system)
):
    """Revoke a refresh token"""
    system.auth_service.logout(request.refresh_token)
    return {"message": "Logged out successfully"}


@router.get("/me", response_model=AccountResponse)
def get_current_account(
    principal: Principal = Depends(get_current_principal),
    system: FlashPaySystem = Depends(get_system)
):
    """Get the authenticated account"""
    return AccountResponse.from_account(system.auth_service.current_account(principal))


@router.get("/health")
async def auth_health():
    """Auth service health check"""
    return {"status": "healthy", "service": "auth"}
