"""Request-derived inputs: caller identity and client address.

Identity is established upstream. The auth layer in front of this service
sets ``X-User-ID`` / ``X-User-Email`` / ``X-User-Role`` after validating
the owner's session; recipients carry no identity at all.
"""

from __future__ import annotations

from fastapi import Request

from ..identity import Identity, Role


def get_identity(request: Request) -> Identity | None:
    user_id = request.headers.get('x-user-id', '').strip()
    if not user_id:
        return None
    raw_role = request.headers.get('x-user-role')
    return Identity(
        user_id=user_id,
        email=request.headers.get('x-user-email', '').strip().lower(),
        role=Role.parse(raw_role) if raw_role else Role.USER,
    )


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get('x-forwarded-for', '')
    if forwarded:
        first = forwarded.split(',')[0].strip()
        if first:
            return first
    return request.client.host if request.client else None
