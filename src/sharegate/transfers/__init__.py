"""Transfers: token issuance, records, and lifecycle."""

from .inmemory import InMemoryTransferRepository
from .model import (
    CreateTransferRequest,
    FileSpec,
    ShareTokenTaken,
    Transfer,
    TransferFile,
    TransferRepository,
    TransferStatus,
    effective_status,
)
from .store import CreateTransferResult, TransferStore
from .tokens import TokenIssuer, collision_probability, generate_share_token

__all__ = [
    'CreateTransferRequest',
    'CreateTransferResult',
    'FileSpec',
    'InMemoryTransferRepository',
    'ShareTokenTaken',
    'TokenIssuer',
    'Transfer',
    'TransferFile',
    'TransferRepository',
    'TransferStatus',
    'TransferStore',
    'collision_probability',
    'effective_status',
    'generate_share_token',
]
