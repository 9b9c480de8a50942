"""Transfer engine configuration settings.

TransferSettings is the single configuration object accepted by create_app().
It is a plain dataclass, not coupled to os.environ; tests construct it
directly.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

_LOCAL_CORS_ORIGINS = (
    'http://localhost:5173',
    'http://localhost:3000',
)


@dataclass(frozen=True, slots=True)
class TransferSettings:
    """Configuration for the transfer engine and its HTTP surface.

    All fields have sensible defaults for local development.
    Non-local environments must supply real Supabase credentials.
    """

    # ── Environment ────────────────────────────────────────────────
    environment: str = 'local'
    """One of: local, dev, staging, production."""

    public_url: str = 'http://localhost:8000'
    """Base URL used to build download links when the client sends no origin."""

    # ── Supabase ───────────────────────────────────────────────────
    supabase_url: str = ''
    supabase_service_role_key: str = ''
    """Service-role key for PostgREST calls. Never log this."""

    # ── Share tokens ───────────────────────────────────────────────
    token_bytes: int = 6
    token_max_attempts: int = 5

    # ── Transfers ──────────────────────────────────────────────────
    password_hash_rounds: int = 12
    default_expiration_days: int = 7
    max_expiration_days: int = 365
    stats_recent_limit: int = 10

    # ── Collaborators ──────────────────────────────────────────────
    notification_timeout_seconds: float = 5.0

    # ── Maintenance ────────────────────────────────────────────────
    expiry_sweep_interval_seconds: float = 0.0
    """Advisory expiry sweep period; 0 disables the background task."""

    # ── CORS ───────────────────────────────────────────────────────
    cors_origins: tuple[str, ...] = _LOCAL_CORS_ORIGINS

    @property
    def is_local(self) -> bool:
        return self.environment == 'local'

    def validate(self) -> list[str]:
        """Return a list of configuration errors. Empty means valid."""
        errors: list[str] = []
        if not self.is_local:
            if not self.supabase_url:
                errors.append(f'{self.environment}: supabase_url is required')
            if not self.supabase_service_role_key:
                errors.append(
                    f'{self.environment}: supabase_service_role_key is required'
                )
        if self.token_bytes < 6:
            errors.append('token_bytes must be >= 6')
        if self.token_max_attempts < 1:
            errors.append('token_max_attempts must be >= 1')
        if not 4 <= self.password_hash_rounds <= 31:
            errors.append('password_hash_rounds must be between 4 and 31')
        if self.default_expiration_days < 1:
            errors.append('default_expiration_days must be >= 1')
        if self.max_expiration_days < self.default_expiration_days:
            errors.append('max_expiration_days must be >= default_expiration_days')
        if self.stats_recent_limit < 0:
            errors.append('stats_recent_limit must be >= 0')
        return errors

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> TransferSettings:
        """Build settings from environment variables.

        This is a convenience factory for production use. Tests should
        construct TransferSettings directly.
        """
        if env is None:
            env = dict(os.environ)

        cors_raw = env.get('CORS_ORIGINS', '')
        cors = (
            tuple(o.strip() for o in cors_raw.split(',') if o.strip())
            if cors_raw
            else _LOCAL_CORS_ORIGINS
        )

        return cls(
            environment=env.get('ENVIRONMENT', 'local'),
            public_url=env.get('PUBLIC_URL', 'http://localhost:8000').rstrip('/'),
            supabase_url=env.get('SUPABASE_URL', ''),
            supabase_service_role_key=env.get('SUPABASE_SERVICE_ROLE_KEY', ''),
            token_bytes=int(env.get('SHARE_TOKEN_BYTES', '6')),
            token_max_attempts=int(env.get('SHARE_TOKEN_MAX_ATTEMPTS', '5')),
            password_hash_rounds=int(env.get('PASSWORD_HASH_ROUNDS', '12')),
            default_expiration_days=int(env.get('DEFAULT_EXPIRATION_DAYS', '7')),
            max_expiration_days=int(env.get('MAX_EXPIRATION_DAYS', '365')),
            stats_recent_limit=int(env.get('STATS_RECENT_LIMIT', '10')),
            notification_timeout_seconds=float(
                env.get('NOTIFICATION_TIMEOUT_SECONDS', '5')
            ),
            expiry_sweep_interval_seconds=float(
                env.get('EXPIRY_SWEEP_INTERVAL_SECONDS', '0')
            ),
            cors_origins=cors,
        )
