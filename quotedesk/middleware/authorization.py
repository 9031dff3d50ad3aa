from fastapi import Depends, HTTPException, status

from quotedesk.middleware.auth import get_current_user
from quotedesk.models.quote_request import QuoteStatus
from quotedesk.services.collaborators import Actor

APPROVAL_ROLES = frozenset({"MASTER_ADMIN", "ADMIN", "MANAGER"})


class RoleAuthorizer:
    """Authorization collaborator driven by a static role table."""

    def __init__(self, approval_roles=APPROVAL_ROLES):
        self.approval_roles = frozenset(approval_roles)

    def has_approval_authority(self, actor: Actor) -> bool:
        return actor.role in self.approval_roles

    def can_edit_quote_items(self, actor: Actor, quote) -> bool:
        if quote.organization_id != actor.organization_id:
            return False
        if quote.status == QuoteStatus.DRAFT:
            return quote.created_by_id == actor.user_id or self.has_approval_authority(actor)
        if quote.status == QuoteStatus.UNDER_REVIEW:
            return self.has_approval_authority(actor)
        return False


_authorizer = RoleAuthorizer()


def get_authorizer() -> RoleAuthorizer:
    return _authorizer


def require_roles(*allowed_roles: str):
    """
    FastAPI dependency factory for role-based access control.

    Usage:
        @router.get("/cost-savings")
        async def cost_savings(
            current_user: dict = Depends(get_current_user),
            _auth: None = Depends(require_roles("ADMIN", "MASTER_ADMIN")),
        ):
    """
    async def check_role(current_user: dict = Depends(get_current_user)):
        if current_user["role"] not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": {
                        "code": "INSUFFICIENT_PERMISSIONS",
                        "message": (
                            f"Role '{current_user['role']}' cannot perform this action. "
                            f"Required: {allowed_roles}"
                        ),
                    }
                },
            )
        return None

    return check_role
