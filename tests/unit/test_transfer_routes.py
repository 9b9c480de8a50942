"""HTTP tests for the transfer and approval routers.

Validates:
  - create_app() wires in-memory storage in local mode.
  - Error kinds map to their status codes in one JSON shape.
  - Owner routes take identity from X-User-* headers, never the body.
  - Access and file download count downloads; metadata does not.
  - Approval request and decision round trip over HTTP.
"""

from __future__ import annotations

import json

import pytest
from httpx import ASGITransport, AsyncClient

from sharegate.collaborators import InMemoryBlobStore
from sharegate.main import create_app
from sharegate.settings import TransferSettings

OWNER = {'X-User-ID': 'user_owner', 'X-User-Email': 'owner@example.com'}
STRANGER = {'X-User-ID': 'user_other'}

FILE = {
    'file_name': 'report.pdf',
    'file_size': 5,
    'mime_type': 'application/pdf',
    'storage_key': 'uploads/report.pdf',
}


def _make_app(**kwargs):
    blob_store = kwargs.pop('blob_store', None) or InMemoryBlobStore()
    settings = kwargs.pop('settings', None) or TransferSettings(password_hash_rounds=4)
    return create_app(settings, blob_store=blob_store, **kwargs), blob_store


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url='http://test')


async def _create(client, **body):
    payload = {'files': [FILE], **body}
    resp = await client.post('/api/v1/transfers', json=payload, headers=OWNER)
    assert resp.status_code == 201, resp.text
    return resp.json()


# =====================================================================
# App wiring
# =====================================================================


class TestCreateApp:

    def test_invalid_settings_rejected(self):
        with pytest.raises(ValueError, match='settings validation failed'):
            create_app(TransferSettings(token_bytes=2))

    def test_non_local_requires_blob_store(self):
        settings = TransferSettings(
            environment='production',
            supabase_url='https://x.supabase.co',
            supabase_service_role_key='svc',
        )
        with pytest.raises(ValueError, match='blob_store'):
            create_app(settings)

    def test_local_uses_in_memory_services(self):
        app, _ = _make_app()
        assert app.state.settings.is_local
        assert app.state.services.store is not None

    @pytest.mark.asyncio
    async def test_health(self):
        app, _ = _make_app()
        async with _client(app) as client:
            resp = await client.get('/health')
        assert resp.status_code == 200
        assert resp.json()['status'] == 'ok'


# =====================================================================
# Create and list
# =====================================================================


class TestCreateRoutes:

    @pytest.mark.asyncio
    async def test_create_returns_share_link(self):
        app, _ = _make_app()
        async with _client(app) as client:
            body = await _create(client, expiration_days=3, download_limit=2)
        assert len(body['share_link']) == 8
        assert body['download_url'].endswith(f"/download/{body['share_link']}")
        assert body['transfer_id']

    @pytest.mark.asyncio
    async def test_owner_comes_from_identity_not_body(self):
        app, _ = _make_app()
        async with _client(app) as client:
            created = await _create(client, user_id='someone_else')
            listed = await client.get('/api/v1/transfers', headers=OWNER)
        ids = [t['id'] for t in listed.json()['transfers']]
        assert created['transfer_id'] in ids

    @pytest.mark.asyncio
    async def test_validation_error_is_invalid_request(self):
        app, _ = _make_app()
        async with _client(app) as client:
            resp = await client.post(
                '/api/v1/transfers',
                json={'files': [FILE], 'expiration_days': 0},
                headers=OWNER,
            )
        assert resp.status_code == 400
        assert resp.json()['error'] == 'INVALID_REQUEST'

    @pytest.mark.asyncio
    async def test_schema_error_does_not_echo_password(self):
        app, _ = _make_app()
        async with _client(app) as client:
            resp = await client.post(
                '/api/v1/transfers',
                json={'files': 'nope', 'password': 'hunter2'},
                headers=OWNER,
            )
        assert resp.status_code == 400
        assert resp.json()['operation'] == 'validate_request'
        assert 'hunter2' not in resp.text

    @pytest.mark.asyncio
    async def test_unencodable_password_is_invalid_request(self):
        app, _ = _make_app()
        body = json.dumps({'files': [FILE], 'password': '\ud800'})
        async with _client(app) as client:
            resp = await client.post(
                '/api/v1/transfers',
                content=body,
                headers={**OWNER, 'Content-Type': 'application/json'},
            )
        assert resp.status_code == 400
        assert resp.json()['error'] == 'INVALID_REQUEST'

    @pytest.mark.asyncio
    async def test_list_requires_identity(self):
        app, _ = _make_app()
        async with _client(app) as client:
            resp = await client.get('/api/v1/transfers')
        assert resp.status_code == 403
        assert resp.json()['error'] == 'FORBIDDEN'

    @pytest.mark.asyncio
    async def test_listing_hides_password_hash(self):
        app, _ = _make_app()
        async with _client(app) as client:
            await _create(client, password='hunter2')
            resp = await client.get('/api/v1/transfers', headers=OWNER)
        (transfer,) = resp.json()['transfers']
        assert transfer['has_password'] is True
        assert 'password_hash' not in transfer
        assert 'hunter2' not in resp.text


# =====================================================================
# Recipient routes
# =====================================================================


class TestRecipientRoutes:

    @pytest.mark.asyncio
    async def test_metadata_never_counts(self):
        app, _ = _make_app()
        async with _client(app) as client:
            created = await _create(client, download_limit=1)
            for _ in range(3):
                resp = await client.get(f"/api/v1/transfers/{created['share_link']}")
                assert resp.status_code == 200
            body = resp.json()
        assert body['status'] == 'ACTIVE'
        assert 'storage_key' not in body['files'][0]

    @pytest.mark.asyncio
    async def test_unknown_token_is_404(self):
        app, _ = _make_app()
        async with _client(app) as client:
            resp = await client.get('/api/v1/transfers/unknown1')
        assert resp.status_code == 404
        assert resp.json() == {
            'error': 'TRANSFER_NOT_FOUND',
            'operation': 'get_transfer',
            'message': 'Transfer not found.',
            'retryable': False,
        }

    @pytest.mark.asyncio
    async def test_access_until_limit(self):
        app, _ = _make_app()
        async with _client(app) as client:
            created = await _create(client, download_limit=2)
            url = f"/api/v1/transfers/{created['share_link']}/access"
            codes = [(await client.post(url)).status_code for _ in range(3)]
            last = await client.post(url)
        assert codes == [200, 200, 410]
        assert last.json()['error'] == 'DOWNLOAD_LIMIT_REACHED'

    @pytest.mark.asyncio
    async def test_access_returns_storage_keys(self):
        app, _ = _make_app()
        async with _client(app) as client:
            created = await _create(client)
            resp = await client.post(
                f"/api/v1/transfers/{created['share_link']}/access",
            )
        body = resp.json()
        assert body['transfer_id'] == created['transfer_id']
        assert body['download_id']
        assert body['files'][0]['storage_key'] == 'uploads/report.pdf'

    @pytest.mark.asyncio
    async def test_password_via_body_or_header(self):
        app, _ = _make_app()
        async with _client(app) as client:
            created = await _create(client, password='hunter2')
            url = f"/api/v1/transfers/{created['share_link']}/access"
            missing = await client.post(url)
            wrong = await client.post(url, json={'password': 'nope'})
            by_body = await client.post(url, json={'password': 'hunter2'})
            by_header = await client.post(url, headers={'X-Share-Password': 'hunter2'})
        assert missing.status_code == 401
        assert missing.json()['error'] == 'PASSWORD_REQUIRED'
        assert wrong.json()['error'] == 'PASSWORD_INCORRECT'
        assert by_body.status_code == 200
        assert by_header.status_code == 200

    @pytest.mark.asyncio
    async def test_unencodable_password_is_incorrect(self):
        app, _ = _make_app()
        async with _client(app) as client:
            created = await _create(client, password='hunter2')
            resp = await client.post(
                f"/api/v1/transfers/{created['share_link']}/access",
                content=json.dumps({'password': '\ud800'}),
                headers={'Content-Type': 'application/json'},
            )
        assert resp.status_code == 401
        assert resp.json()['error'] == 'PASSWORD_INCORRECT'

    @pytest.mark.asyncio
    async def test_file_download_streams_content(self):
        app, blobs = _make_app()
        await blobs.put('uploads/report.pdf', b'%PDF-')
        async with _client(app) as client:
            created = await _create(client)
            meta = await client.get(f"/api/v1/transfers/{created['share_link']}")
            file_id = meta.json()['files'][0]['id']
            resp = await client.get(
                f"/api/v1/transfers/{created['share_link']}/files/{file_id}",
            )
        assert resp.status_code == 200
        assert resp.content == b'%PDF-'
        assert resp.headers['content-type'] == 'application/pdf'
        assert "filename*=UTF-8''report.pdf" in resp.headers['content-disposition']

    @pytest.mark.asyncio
    async def test_unknown_file_is_404(self):
        app, _ = _make_app()
        async with _client(app) as client:
            created = await _create(client)
            resp = await client.get(
                f"/api/v1/transfers/{created['share_link']}/files/nope",
            )
        assert resp.status_code == 404
        assert resp.json()['error'] == 'FILE_NOT_FOUND'

    @pytest.mark.asyncio
    async def test_blob_store_outage_is_retryable(self):
        class _DownBlobStore:
            async def put(self, key, data):
                raise ConnectionError('down')

            async def get(self, key):
                raise ConnectionError('down')

        app, _ = _make_app(blob_store=_DownBlobStore())
        async with _client(app) as client:
            created = await _create(client)
            meta = await client.get(f"/api/v1/transfers/{created['share_link']}")
            file_id = meta.json()['files'][0]['id']
            resp = await client.get(
                f"/api/v1/transfers/{created['share_link']}/files/{file_id}",
            )
        assert resp.status_code == 503
        assert resp.json()['retryable'] is True
        assert resp.headers['retry-after'] == '1'


# =====================================================================
# Owner routes
# =====================================================================


class TestOwnerRoutes:

    @pytest.mark.asyncio
    async def test_revoke_is_idempotent(self):
        app, _ = _make_app()
        async with _client(app) as client:
            created = await _create(client)
            url = f"/api/v1/transfers/id/{created['transfer_id']}"
            first = await client.delete(url, headers=OWNER)
            second = await client.delete(url, headers=OWNER)
            access = await client.post(
                f"/api/v1/transfers/{created['share_link']}/access",
            )
        assert first.json() == {
            'transfer_id': created['transfer_id'], 'status': 'REVOKED', 'changed': True,
        }
        assert second.status_code == 200
        assert second.json()['changed'] is False
        assert access.status_code == 410
        assert access.json()['error'] == 'TRANSFER_REVOKED'

    @pytest.mark.asyncio
    async def test_revoke_by_stranger_forbidden(self):
        app, _ = _make_app()
        async with _client(app) as client:
            created = await _create(client)
            resp = await client.delete(
                f"/api/v1/transfers/id/{created['transfer_id']}", headers=STRANGER,
            )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_stats(self):
        """Stats are owner-only and reflect counted downloads."""
        app, _ = _make_app()
        async with _client(app) as client:
            created = await _create(client)
            for ip in ('10.0.0.1', '10.0.0.2', '10.0.0.1'):
                await client.post(
                    f"/api/v1/transfers/{created['share_link']}/access",
                    headers={'X-Forwarded-For': f'{ip}, 172.16.0.1'},
                )
            url = f"/api/v1/transfers/id/{created['transfer_id']}/stats"
            owner_view = await client.get(url, headers=OWNER)
            limited = await client.get(url, params={'limit': 1}, headers=OWNER)
            stranger_view = await client.get(url, headers=STRANGER)
        stats = owner_view.json()
        assert stats['total_downloads'] == 3
        assert stats['unique_downloaders'] == 2
        assert len(limited.json()['downloads']) == 1
        assert stranger_view.status_code == 403

    @pytest.mark.asyncio
    async def test_stats_unknown_transfer(self):
        app, _ = _make_app()
        async with _client(app) as client:
            resp = await client.get('/api/v1/transfers/id/missing/stats', headers=OWNER)
        assert resp.status_code == 404


# =====================================================================
# Approvals
# =====================================================================


class TestApprovalRoutes:

    @pytest.mark.asyncio
    async def test_request_decide_access(self):
        """Full approval round trip through the HTTP surface."""
        app, _ = _make_app()
        async with _client(app) as client:
            created = await _create(client, approval_required=True)
            token = created['share_link']
            access_url = f'/api/v1/transfers/{token}/access'
            who = {'requester_email': 'bob@example.com'}

            required = await client.post(access_url, json=who)
            opened = await client.post(f'/api/v1/transfers/{token}/approvals', json=who)
            repeated = await client.post(f'/api/v1/transfers/{token}/approvals', json=who)
            pending = await client.post(access_url, json=who)

            listed = await client.get(
                f"/api/v1/transfers/id/{created['transfer_id']}/approvals",
                params={'status': 'pending'},
                headers=OWNER,
            )
            request_id = opened.json()['id']
            decision_url = f'/api/v1/approvals/{request_id}/decision'
            forbidden = await client.post(
                decision_url, json={'outcome': 'APPROVED'}, headers=STRANGER,
            )
            decided = await client.post(
                decision_url, json={'outcome': 'APPROVED'}, headers=OWNER,
            )
            again = await client.post(
                decision_url, json={'outcome': 'DENIED'}, headers=OWNER,
            )
            granted = await client.post(
                access_url, headers={'X-Requester-Email': 'bob@example.com'},
            )

        assert required.status_code == 403
        assert required.json()['error'] == 'APPROVAL_REQUIRED'
        assert opened.status_code == 201
        assert repeated.status_code == 200
        assert repeated.json()['id'] == request_id
        assert pending.status_code == 409
        assert pending.json()['error'] == 'APPROVAL_PENDING'
        assert [r['id'] for r in listed.json()['approvals']] == [request_id]
        assert forbidden.status_code == 403
        assert decided.json()['changed'] is True
        assert decided.json()['request']['status'] == 'APPROVED'
        assert again.status_code == 200
        assert again.json()['changed'] is False
        assert again.json()['request']['status'] == 'APPROVED'
        assert granted.status_code == 200

    @pytest.mark.asyncio
    async def test_unknown_request_is_404(self):
        app, _ = _make_app()
        async with _client(app) as client:
            resp = await client.post(
                '/api/v1/approvals/missing/decision',
                json={'outcome': 'APPROVED'},
                headers=OWNER,
            )
        assert resp.status_code == 404
        assert resp.json()['error'] == 'APPROVAL_NOT_FOUND'

    @pytest.mark.asyncio
    async def test_invalid_status_filter(self):
        app, _ = _make_app()
        async with _client(app) as client:
            created = await _create(client, approval_required=True)
            resp = await client.get(
                f"/api/v1/transfers/id/{created['transfer_id']}/approvals",
                params={'status': 'maybe'},
                headers=OWNER,
            )
        assert resp.status_code == 400
