"""Owner-or-admin checks shared by every controller that mutates owned resources.

Each ownable model exposes an ``owner_ref`` property returning an
:class:`OwnerRef`. A mutation is allowed when that reference names the
requesting principal exactly (kind and id), or when the requester is an admin
user. Callers fetch the resource and answer 404 first; these helpers only run
against a resource that exists.
"""

from fastapi import HTTPException, status

from backend.auth.dependencies import is_admin
from backend.auth.principal import OwnerRef, Principal

FORBIDDEN_MESSAGE = "Not authorized to modify this resource"


def is_owner(owner: OwnerRef, principal: Principal | None) -> bool:
    if principal is None:
        return False
    return owner.kind is principal.kind and owner.id == principal.id


def can_mutate(resource, principal: Principal | None) -> bool:
    return is_owner(resource.owner_ref, principal) or is_admin(principal)


def ensure_can_mutate(resource, principal: Principal | None, detail: str = FORBIDDEN_MESSAGE) -> None:
    if not can_mutate(resource, principal):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def ensure_owner(owner: OwnerRef, principal: Principal | None, detail: str = FORBIDDEN_MESSAGE) -> None:
    """Strict variant without the admin override, for owner-private resources."""
    if not is_owner(owner, principal):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)
