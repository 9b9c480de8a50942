"""sharegate FastAPI application factory.

The create_app() factory is the single entry point for building the ASGI
application. It validates settings, wires storage and collaborators into the
engine services, and mounts the routers and observability middleware.

Usage:
    # Local development (everything in memory)
    from sharegate import create_app, TransferSettings
    app = create_app(TransferSettings())

    # Non-local (Supabase storage built from settings)
    app = create_app(TransferSettings.from_env())

    # Testing (full DI control)
    app = create_app(settings, transfer_repo=repo, notifier=dispatcher)
"""

from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from .access.evaluator import AccessPolicyEvaluator
from .api.approvals import create_approval_router
from .api.errors import handle_transfer_error, handle_validation_error
from .api.transfers import create_transfer_router
from .approvals.model import ApprovalRepository, InMemoryApprovalRepository
from .approvals.workflow import ApprovalWorkflow
from .collaborators import (
    BlobStore,
    GeoIpResolver,
    InMemoryBlobStore,
    InMemoryNotificationDispatcher,
    NotificationDispatcher,
    NullGeoIpResolver,
)
from .downloads.model import DownloadLedger
from .downloads.tracker import DownloadTracker
from .errors import TransferError
from .observability.logging import configure_logging, get_logger
from .observability.metrics import metrics_text
from .observability.middleware import (
    MetricsMiddleware,
    RequestIdMiddleware,
    RequestLoggingMiddleware,
)
from .operations.expiry_sweep import ExpirySweeper
from .settings import TransferSettings
from .transfers.inmemory import InMemoryTransferRepository
from .transfers.model import TransferRepository
from .transfers.store import TransferStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class AppDependencies:
    """Storage and collaborator instances, stored on ``app.state.deps``."""

    transfer_repo: TransferRepository
    ledger: DownloadLedger
    approval_repo: ApprovalRepository
    blob_store: BlobStore
    geoip: GeoIpResolver
    notifier: NotificationDispatcher


@dataclass(frozen=True)
class AppServices:
    """Engine services, stored on ``app.state.services``."""

    store: TransferStore
    workflow: ApprovalWorkflow
    tracker: DownloadTracker
    evaluator: AccessPolicyEvaluator
    sweeper: ExpirySweeper


def _build_supabase_repos(settings: TransferSettings) -> tuple[Any, Any]:
    from .db import PostgrestClient, SupabaseApprovalRepository, SupabaseTransferRepository

    client = PostgrestClient(
        supabase_url=settings.supabase_url,
        service_role_key=settings.supabase_service_role_key,
        default_schema='sharegate',
    )
    return SupabaseTransferRepository(client), SupabaseApprovalRepository(client)


def _build_deps(
    settings: TransferSettings,
    *,
    transfer_repo: TransferRepository | None,
    approval_repo: ApprovalRepository | None,
    blob_store: BlobStore | None,
    geoip: GeoIpResolver | None,
    notifier: NotificationDispatcher | None,
) -> AppDependencies:
    if transfer_repo is None or approval_repo is None:
        if settings.is_local:
            transfer_repo = transfer_repo or InMemoryTransferRepository()
            approval_repo = approval_repo or InMemoryApprovalRepository()
        else:
            supabase_transfers, supabase_approvals = _build_supabase_repos(settings)
            transfer_repo = transfer_repo or supabase_transfers
            approval_repo = approval_repo or supabase_approvals

    if not isinstance(transfer_repo, DownloadLedger):
        raise ValueError(
            'transfer_repo must also implement DownloadLedger '
            '(record_if_below_limit, list_events)'
        )

    if blob_store is None and not settings.is_local:
        raise ValueError(
            f'Non-local environment ({settings.environment}) requires a blob_store'
        )

    return AppDependencies(
        transfer_repo=transfer_repo,
        ledger=transfer_repo,
        approval_repo=approval_repo,
        blob_store=blob_store or InMemoryBlobStore(),
        geoip=geoip or NullGeoIpResolver(),
        notifier=notifier or InMemoryNotificationDispatcher(),
    )


def _build_services(deps: AppDependencies, settings: TransferSettings) -> AppServices:
    tracker = DownloadTracker(
        deps.ledger,
        deps.transfer_repo,
        geoip=deps.geoip,
        recent_limit=settings.stats_recent_limit,
    )
    return AppServices(
        store=TransferStore(
            deps.transfer_repo, notifier=deps.notifier, settings=settings,
        ),
        workflow=ApprovalWorkflow(
            deps.approval_repo,
            deps.transfer_repo,
            notifier=deps.notifier,
            notification_timeout=settings.notification_timeout_seconds,
        ),
        tracker=tracker,
        evaluator=AccessPolicyEvaluator(
            deps.transfer_repo, deps.approval_repo, tracker,
        ),
        sweeper=ExpirySweeper(deps.transfer_repo),
    )


def create_app(
    settings: TransferSettings | None = None,
    *,
    transfer_repo: TransferRepository | None = None,
    approval_repo: ApprovalRepository | None = None,
    blob_store: BlobStore | None = None,
    geoip: GeoIpResolver | None = None,
    notifier: NotificationDispatcher | None = None,
) -> FastAPI:
    """Create a configured sharegate FastAPI application.

    Args:
        settings: Application settings. Defaults to local-dev settings.
        transfer_repo: Transfer storage; must also be the download ledger.
        approval_repo: Approval request storage.
        blob_store, geoip, notifier: Collaborator overrides.

    Returns:
        Configured FastAPI application ready for uvicorn.run().

    Raises:
        ValueError: If settings validation fails or a non-local environment
            lacks a blob store.
    """
    if settings is None:
        settings = TransferSettings()

    errors = settings.validate()
    if errors:
        raise ValueError(
            'sharegate settings validation failed:\n'
            + '\n'.join(f'  - {e}' for e in errors)
        )

    configure_logging()

    deps = _build_deps(
        settings,
        transfer_repo=transfer_repo,
        approval_repo=approval_repo,
        blob_store=blob_store,
        geoip=geoip,
        notifier=notifier,
    )
    services = _build_services(deps, settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info('sharegate_startup', environment=settings.environment)
        sweep_task = None
        if settings.expiry_sweep_interval_seconds > 0:
            sweep_task = asyncio.create_task(
                services.sweeper.run_periodically(
                    settings.expiry_sweep_interval_seconds,
                ),
            )
        try:
            yield
        finally:
            if sweep_task is not None:
                sweep_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await sweep_task
            logger.info('sharegate_shutdown')

    app = FastAPI(
        title='sharegate',
        description='Share-link access control and transfer lifecycle',
        version='0.1.0',
        lifespan=lifespan,
    )
    app.state.deps = deps
    app.state.services = services
    app.state.settings = settings

    app.add_exception_handler(TransferError, handle_transfer_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)

    # ── Middleware stack (last added runs first) ─────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=['*'],
        allow_headers=['*'],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # ── Routes ──────────────────────────────────────────────────

    @app.get('/health')
    async def health():
        return {'status': 'ok', 'environment': settings.environment}

    @app.get('/metrics')
    async def metrics():
        body, content_type = metrics_text()
        return Response(content=body, media_type=content_type)

    app.include_router(
        create_transfer_router(
            services.store,
            services.evaluator,
            services.tracker,
            services.workflow,
            deps.blob_store,
            settings,
        )
    )
    app.include_router(create_approval_router(services.workflow))
    return app


# For uvicorn, use --factory flag:
#   uvicorn sharegate.main:create_app --factory
