"""sharegate: share-link access control and transfer lifecycle engine."""

from .main import create_app
from .settings import TransferSettings

__all__ = ['TransferSettings', 'create_app']
