from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from backend.auth.ownership import can_mutate, ensure_can_mutate, ensure_owner, is_owner
from backend.auth.principal import OwnerRef, Principal, PrincipalKind


def make_principal(kind: PrincipalKind, principal_id: str, role: str = 'student') -> Principal:
    return Principal(kind=kind, record=SimpleNamespace(id=principal_id, role=role, is_premium=False))


def owned_by(kind: PrincipalKind, owner_id: str) -> SimpleNamespace:
    return SimpleNamespace(owner_ref=OwnerRef(kind=kind, id=owner_id), title='Owned resource')


def test_owner_can_mutate_own_resource() -> None:
    mentor = make_principal(PrincipalKind.MENTOR, 'm1')

    assert can_mutate(owned_by(PrincipalKind.MENTOR, 'm1'), mentor) is True


def test_other_principal_of_same_kind_cannot_mutate() -> None:
    other_mentor = make_principal(PrincipalKind.MENTOR, 'm2')

    assert can_mutate(owned_by(PrincipalKind.MENTOR, 'm1'), other_mentor) is False


def test_matching_id_with_different_kind_is_not_owner() -> None:
    school = make_principal(PrincipalKind.SCHOOL, 'shared-id')

    assert is_owner(OwnerRef(kind=PrincipalKind.USER, id='shared-id'), school) is False


def test_admin_user_overrides_ownership() -> None:
    admin = make_principal(PrincipalKind.USER, 'admin-1', role='admin')

    assert can_mutate(owned_by(PrincipalKind.MENTOR, 'm1'), admin) is True


def test_non_admin_user_does_not_override_ownership() -> None:
    student = make_principal(PrincipalKind.USER, 'u1')

    assert can_mutate(owned_by(PrincipalKind.MENTOR, 'm1'), student) is False


def test_admin_role_only_counts_for_user_principals() -> None:
    mentor_with_admin_role = make_principal(PrincipalKind.MENTOR, 'm2', role='admin')

    assert can_mutate(owned_by(PrincipalKind.MENTOR, 'm1'), mentor_with_admin_role) is False


def test_anonymous_principal_cannot_mutate() -> None:
    assert can_mutate(owned_by(PrincipalKind.USER, 'u1'), None) is False


@pytest.mark.parametrize(
    ('principal', 'expected'),
    [
        (make_principal(PrincipalKind.MENTOR, 'm1'), True),
        (make_principal(PrincipalKind.MENTOR, 'm2'), False),
        (make_principal(PrincipalKind.USER, 'admin', role='admin'), True),
        (make_principal(PrincipalKind.USER, 'u1'), False),
    ],
)
def test_ownership_check_is_stable_and_does_not_touch_inputs(principal: Principal, expected: bool) -> None:
    resource = owned_by(PrincipalKind.MENTOR, 'm1')
    before = (resource.owner_ref, resource.title, principal.record.role)

    results = {can_mutate(resource, principal) for _ in range(5)}

    assert results == {expected}
    assert (resource.owner_ref, resource.title, principal.record.role) == before


def test_ensure_can_mutate_raises_forbidden_with_fixed_message() -> None:
    with pytest.raises(HTTPException) as exception_info:
        ensure_can_mutate(owned_by(PrincipalKind.MENTOR, 'm1'), make_principal(PrincipalKind.MENTOR, 'm2'))

    assert exception_info.value.status_code == 403
    assert exception_info.value.detail == 'Not authorized to modify this resource'


def test_ensure_owner_ignores_admin_override() -> None:
    admin = make_principal(PrincipalKind.USER, 'admin-1', role='admin')

    with pytest.raises(HTTPException) as exception_info:
        ensure_owner(OwnerRef(kind=PrincipalKind.USER, id='u1'), admin, 'Only the owner can do this')

    assert exception_info.value.status_code == 403
    assert exception_info.value.detail == 'Only the owner can do this'
