import hmac
from dataclasses import dataclass, field

from fastapi import Depends, Header

from formjobs.config.settings import AuthMode, Settings, get_settings
from formjobs.v1.core.exceptions import ForbiddenError, UnauthorizedError, ValidationError

ADMIN_ROLE = "admin"


@dataclass
class Principal:
    """Represents the current authenticated caller."""

    user_id: str
    roles: list[str] = field(default_factory=list)
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.roles


async def get_principal(
    settings: Settings = Depends(get_settings),
    authorization: str | None = Header(None),
    x_user_id: str | None = Header(None, alias="X-User-ID"),
    x_user_roles: str | None = Header(None, alias="X-User-Roles"),
) -> Principal:
    """
    Dependency injection function to get the current principal.

    Behavior based on AUTH_MODE:
    - none: Returns the dev user with admin role
    - dev: Identity from X-User-ID, roles from X-User-Roles (default admin)
    - token: Bearer token must match ADMIN_API_TOKEN
    """
    if settings.auth_mode == AuthMode.NONE:
        return Principal(user_id=settings.dev_user_id, roles=[ADMIN_ROLE])
    elif settings.auth_mode == AuthMode.DEV:
        if not x_user_id:
            raise ValidationError("X-User-ID header is required in dev auth mode")

        roles = [ADMIN_ROLE]
        if x_user_roles is not None:
            roles = [role.strip() for role in x_user_roles.split(",") if role.strip()]

        return Principal(user_id=x_user_id, roles=roles)
    elif settings.auth_mode == AuthMode.TOKEN:
        scheme, _, token = (authorization or "").partition(" ")
        if scheme.lower() != "bearer" or not token:
            raise UnauthorizedError("Missing bearer token")

        expected = settings.admin_api_token or ""
        if not hmac.compare_digest(token.encode(), expected.encode()):
            raise UnauthorizedError("Invalid bearer token")

        return Principal(user_id="token-admin", roles=[ADMIN_ROLE])
    else:
        raise ValueError(f"Unknown auth mode: {settings.auth_mode}")


async def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    """Allow only callers holding the admin role."""
    if not principal.is_admin:
        raise ForbiddenError(
            "Admin role required", details={"user_id": principal.user_id}
        )
    return principal


# Convenience type aliases for dependency injection
PrincipalDep = Depends(get_principal)
AdminDep = Depends(require_admin)
