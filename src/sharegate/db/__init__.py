"""Supabase (PostgREST) storage backend."""

from .approval_repo import SupabaseApprovalRepository
from .errors import PostgrestConflict
from .postgrest import PostgrestClient
from .transfer_repo import SupabaseTransferRepository

__all__ = [
    'PostgrestClient',
    'PostgrestConflict',
    'SupabaseApprovalRepository',
    'SupabaseTransferRepository',
]
