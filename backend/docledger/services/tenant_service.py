"""
Tenant Service: organizations, users and customers

Users are provisioned by the external auth service in production; the
helpers here exist for bootstrap (CLI) and tests. Customers get their
number from the sequence allocator like every other numbered record.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Customer, Organization, User
from ..models.tenancy import USER_ROLES
from ..validation import ConflictError, ValidationError
from .concurrency import begin_write, run_with_retry
from .sequence_service import next_number


class TenantAccessError(Exception):
    """Raised when a request's tenant context is missing or inconsistent."""
    pass


def resolve_tenant_user(org_id: int, user_id: int) -> User:
    """
    Load the active user behind an upstream-authenticated request.

    Raises TenantAccessError when the user does not exist, is inactive, or
    belongs to another (or an inactive) organization.
    """
    user = (
        db.session.query(User)
        .join(Organization, Organization.id == User.org_id)
        .filter(
            User.id == user_id,
            User.org_id == org_id,
            User.is_active == True,  # noqa: E712
            Organization.is_active == True,  # noqa: E712
        )
        .first()
    )
    if user is None:
        raise TenantAccessError("Unknown user for this organization")
    return user


def create_organization(name: str, code: str | None = None) -> Organization:
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")

    org = Organization(name=name, code=(code or "").strip() or None)
    db.session.add(org)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Organization code already exists")
    current_app.logger.info("Created organization %s (%s)", org.id, org.name)
    return org


def create_user(org_id: int, email: str, role: str, full_name: str | None = None) -> User:
    email = (email or "").strip().lower()
    if not email:
        raise ValidationError("email is required")
    if role not in USER_ROLES:
        raise ValidationError(f"role must be one of: {', '.join(USER_ROLES)}")
    if db.session.get(Organization, org_id) is None:
        raise ValidationError("Organization not found")

    user = User(org_id=org_id, email=email, role=role, full_name=full_name)
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("A user with this email already exists in the organization")
    return user


def create_customer(org_id: int, name: str) -> Customer:
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")

    def _op() -> int:
        begin_write()
        customer = Customer(org_id=org_id, name=name, customer_number=next_number(org_id, "customer"))
        db.session.add(customer)
        db.session.commit()
        return customer.id

    return db.session.get(Customer, run_with_retry(_op))
