"""HTTP surface: router factories with injected services."""

from .approvals import create_approval_router
from .transfers import create_transfer_router

__all__ = ['create_approval_router', 'create_transfer_router']
