"""Tests for the public share/upload endpoints."""
import pytest
from httpx import AsyncClient, ASGITransport

from sharegate.app import create_user_app
from sharegate.config import RateLimitConfig

NO_SUCH_FILE = {'detail': 'No such file'}


@pytest.fixture
def app(store, config):
    return create_user_app(store, config)


def client_for(app):
    return AsyncClient(transport=ASGITransport(app=app), base_url='http://test')


@pytest.fixture
def share_token(store):
    return store.create_share(['a.txt', 'b/c.txt'], label='docs')


@pytest.fixture
def upload_token(store):
    return store.create_upload('inbox', max_file_size=10)


class TestShares:

    @pytest.mark.asyncio
    async def test_listing(self, app, share_token):
        async with client_for(app) as client:
            response = await client.get(f'/share/{share_token}')
        assert response.status_code == 200
        data = response.json()
        assert data['label'] == 'docs'
        assert data['files'] == [
            {'name': 'a.txt', 'size': 5},
            {'name': 'b/c.txt', 'size': 7},
        ]

    @pytest.mark.asyncio
    async def test_listing_skips_vanished_files(self, app, share_token, roots):
        (roots['files'] / 'a.txt').unlink()
        async with client_for(app) as client:
            response = await client.get(f'/share/{share_token}')
        assert [f['name'] for f in response.json()['files']] == ['b/c.txt']

    @pytest.mark.asyncio
    async def test_download(self, app, share_token):
        async with client_for(app) as client:
            first = await client.get(f'/share/{share_token}/a.txt')
            nested = await client.get(f'/share/{share_token}/b/c.txt')
        assert first.status_code == 200
        assert first.content == b'alpha'
        assert nested.content == b'charlie'

    @pytest.mark.asyncio
    async def test_every_denial_looks_the_same(self, app, store, share_token, upload_token):
        unknown = store.codec.generate()
        paths = [
            f'/share/{share_token}/other.txt',
            f'/share/{share_token}/missing.txt',
            f'/share/{share_token}/..%2Fa.txt',
            f'/share/{share_token}/b%2F..%2F..%2Foutside.txt',
            f'/share/{share_token}/a.txt%00',
            f'/share/{unknown}/a.txt',
            '/share/not-a-token/a.txt',
            f'/share/{upload_token}/a.txt',
            f'/share/{upload_token}',
            '/share/short',
        ]
        async with client_for(app) as client:
            for path in paths:
                response = await client.get(path)
                assert response.status_code == 404, path
                assert response.json() == NO_SUCH_FILE, path

    @pytest.mark.asyncio
    async def test_revoked_share(self, app, store, share_token):
        store.delete(share_token)
        async with client_for(app) as client:
            response = await client.get(f'/share/{share_token}/a.txt')
        assert response.status_code == 404
        assert response.json() == NO_SUCH_FILE


class TestUploads:

    @pytest.mark.asyncio
    async def test_info(self, app, upload_token):
        async with client_for(app) as client:
            response = await client.get(f'/upload/{upload_token}')
        assert response.status_code == 200
        data = response.json()
        assert data['name'] == 'inbox'
        assert data['max_file_size'] == 10
        assert data['remaining_bytes'] == 10

    @pytest.mark.asyncio
    async def test_multipart_upload(self, app, store, upload_token):
        async with client_for(app) as client:
            response = await client.post(
                f'/upload/{upload_token}',
                files=[('files', ('one.txt', b'one')), ('files', ('two.txt', b'two'))],
            )
            retry = await client.post(
                f'/upload/{upload_token}',
                files=[('files', ('one.txt', b'changed'))],
            )
        assert response.status_code == 201
        assert response.json() == {'uploaded': ['one.txt', 'two.txt']}
        assert retry.status_code == 409

        upload = store.lookup(upload_token)
        assert store.received_files(upload) == [('one.txt', 3), ('two.txt', 3)]
        assert (store.upload_sandbox(upload) / 'one.txt').read_bytes() == b'one'

    @pytest.mark.asyncio
    async def test_raw_upload(self, app, store, upload_token):
        async with client_for(app) as client:
            response = await client.put(f'/upload/{upload_token}/report.pdf', content=b'%PDF-1.4')
        assert response.status_code == 201
        assert response.json() == {'uploaded': ['report.pdf']}
        upload = store.lookup(upload_token)
        assert (store.upload_sandbox(upload) / 'report.pdf').read_bytes() == b'%PDF-1.4'

    @pytest.mark.asyncio
    async def test_declared_size_too_large(self, app, store, upload_token):
        async with client_for(app) as client:
            response = await client.put(f'/upload/{upload_token}/big.bin', content=b'x' * 11)
        assert response.status_code == 413
        assert store.received_files(store.lookup(upload_token)) == []

    @pytest.mark.asyncio
    async def test_streamed_size_too_large(self, app, store, upload_token):
        async def body():
            for _ in range(4):
                yield b'xxxx'

        async with client_for(app) as client:
            response = await client.put(f'/upload/{upload_token}/big.bin', content=body())
        assert response.status_code == 413
        upload = store.lookup(upload_token)
        assert store.received_files(upload) == []
        assert list(store.partial_dir(upload).iterdir()) == []

    @pytest.mark.asyncio
    async def test_multipart_too_large(self, app, store, upload_token):
        async with client_for(app) as client:
            response = await client.post(
                f'/upload/{upload_token}',
                files=[('files', ('big.bin', b'x' * 11))],
            )
        assert response.status_code == 413
        assert store.received_files(store.lookup(upload_token)) == []

    @pytest.mark.asyncio
    async def test_bad_names_look_like_missing_files(self, app, store, upload_token):
        async with client_for(app) as client:
            escape = await client.put(f'/upload/{upload_token}/..%2Fescape.txt', content=b'x')
            wrong_kind = await client.put(
                f'/upload/{store.create_share(["a.txt"])}/x.txt', content=b'x'
            )
            unknown = await client.put(f'/upload/{store.codec.generate()}/x.txt', content=b'x')
        for response in (escape, wrong_kind, unknown):
            assert response.status_code == 404
            assert response.json() == NO_SUCH_FILE
        assert store.received_files(store.lookup(upload_token)) == []

    @pytest.mark.asyncio
    async def test_revoked_upload(self, app, store, upload_token):
        store.delete(upload_token)
        async with client_for(app) as client:
            response = await client.put(f'/upload/{upload_token}/x.txt', content=b'x')
        assert response.status_code == 404


class TestMultipartLimits:

    BOUNDARY = 'sharegate-test-boundary'

    def _headers(self):
        return {'Content-Type': f'multipart/form-data; boundary={self.BOUNDARY}'}

    @pytest.mark.asyncio
    async def test_oversized_part_is_cut_off_while_streaming(self, app, store, upload_token):
        chunk = 64 * 1024
        sent = []

        async def body():
            head = (
                f'--{self.BOUNDARY}\r\n'
                'Content-Disposition: form-data; name="files"; filename="big.bin"\r\n'
                'Content-Type: application/octet-stream\r\n\r\n'
            ).encode()
            sent.append(len(head))
            yield head
            for _ in range(50):
                sent.append(chunk)
                yield b'x' * chunk
            yield f'\r\n--{self.BOUNDARY}--\r\n'.encode()

        async with client_for(app) as client:
            response = await client.post(f'/upload/{upload_token}', content=body(), headers=self._headers())
        assert response.status_code == 413
        assert len(sent) < 5
        upload = store.lookup(upload_token)
        assert store.received_files(upload) == []
        assert list(store.partial_dir(upload).iterdir()) == []

    @pytest.mark.asyncio
    async def test_batch_lands_all_or_nothing(self, app, store, upload_token):
        batch = [('files', ('one.txt', b'one')), ('files', ('big.bin', b'x' * 11))]
        async with client_for(app) as client:
            first = await client.post(f'/upload/{upload_token}', files=batch)
            retry = await client.post(f'/upload/{upload_token}', files=batch)
            fixed = await client.post(
                f'/upload/{upload_token}',
                files=[('files', ('one.txt', b'one')), ('files', ('two.txt', b'two'))],
            )
        assert first.status_code == 413
        assert retry.status_code == 413
        assert fixed.status_code == 201
        upload = store.lookup(upload_token)
        assert store.received_files(upload) == [('one.txt', 3), ('two.txt', 3)]
        assert list(store.partial_dir(upload).iterdir()) == []

    @pytest.mark.asyncio
    async def test_quota_covers_the_whole_batch(self, app, store):
        token = store.create_upload('inbox', quota=10)
        async with client_for(app) as client:
            response = await client.post(
                f'/upload/{token}',
                files=[('files', ('a.bin', b'x' * 6)), ('files', ('b.bin', b'x' * 6))],
            )
        assert response.status_code == 413
        assert store.received_files(store.lookup(token)) == []

    @pytest.mark.asyncio
    async def test_repeated_name_in_one_batch(self, app, store, upload_token):
        async with client_for(app) as client:
            response = await client.post(
                f'/upload/{upload_token}',
                files=[('files', ('same.txt', b'one')), ('files', ('same.txt', b'two'))],
            )
        assert response.status_code == 409
        assert store.received_files(store.lookup(upload_token)) == []

    @pytest.mark.asyncio
    async def test_non_file_fields_are_ignored(self, app, store, upload_token):
        async with client_for(app) as client:
            response = await client.post(
                f'/upload/{upload_token}',
                data={'note': 'hello'},
                files=[('files', ('one.txt', b'one'))],
            )
        assert response.status_code == 201
        assert response.json() == {'uploaded': ['one.txt']}

    @pytest.mark.asyncio
    async def test_malformed_bodies(self, app, store, upload_token):
        async with client_for(app) as client:
            not_multipart = await client.post(
                f'/upload/{upload_token}', content=b'raw', headers={'Content-Type': 'text/plain'}
            )
            no_files = await client.post(
                f'/upload/{upload_token}',
                content=(
                    f'--{self.BOUNDARY}\r\n'
                    'Content-Disposition: form-data; name="note"\r\n\r\n'
                    'hello\r\n'
                    f'--{self.BOUNDARY}--\r\n'
                ).encode(),
                headers=self._headers(),
            )
            truncated = await client.post(
                f'/upload/{upload_token}',
                content=(
                    f'--{self.BOUNDARY}\r\n'
                    'Content-Disposition: form-data; name="files"; filename="cut.bin"\r\n\r\n'
                    'partial data'
                ).encode(),
                headers=self._headers(),
            )
        assert not_multipart.status_code == 400
        assert no_files.status_code == 400
        assert truncated.status_code == 400
        upload = store.lookup(upload_token)
        assert store.received_files(upload) == []
        assert list(store.partial_dir(upload).iterdir()) == []

    @pytest.mark.asyncio
    async def test_overlong_name_is_a_missing_file(self, app, store, upload_token):
        async with client_for(app) as client:
            response = await client.put(f'/upload/{upload_token}/{"a" * 300}', content=b'x')
        assert response.status_code == 404
        assert response.json() == NO_SUCH_FILE


@pytest.mark.asyncio
async def test_rate_limit(store, config):
    config.rate_limit = RateLimitConfig(enabled=True, user_limit='2/minute')
    app = create_user_app(store, config)
    async with client_for(app) as client:
        codes = [(await client.get('/share/not-a-token')).status_code for _ in range(3)]
    assert codes == [404, 404, 429]


@pytest.mark.asyncio
async def test_rate_limit_ignores_forwarding_headers(store, config):
    config.rate_limit = RateLimitConfig(enabled=True, user_limit='2/minute')
    app = create_user_app(store, config)
    async with client_for(app) as client:
        codes = [
            (await client.get('/share/not-a-token', headers={'X-Forwarded-For': f'10.0.0.{i}'})).status_code
            for i in range(5)
        ]
    assert codes == [404, 404, 429, 429, 429]


@pytest.mark.asyncio
async def test_rate_limit_behind_trusted_proxy(store, config):
    config.rate_limit = RateLimitConfig(enabled=True, user_limit='2/minute')
    config.server.trusted_proxy = True
    app = create_user_app(store, config)
    async with client_for(app) as client:
        spread = [
            (await client.get('/share/not-a-token', headers={'X-Forwarded-For': f'10.0.0.{i}'})).status_code
            for i in range(5)
        ]
        same = [
            (await client.get('/share/not-a-token', headers={'CF-Connecting-IP': '198.51.100.7'})).status_code
            for _ in range(3)
        ]
    assert spread == [404] * 5
    assert same == [404, 404, 429]


@pytest.mark.asyncio
async def test_rate_limit_covers_uploads(store, config):
    config.rate_limit = RateLimitConfig(enabled=True, user_limit='1/minute')
    app = create_user_app(store, config)
    token = store.create_upload('inbox')
    async with client_for(app) as client:
        first = await client.put(f'/upload/{token}/one.txt', content=b'1')
        second = await client.put(f'/upload/{token}/two.txt', content=b'2')
    assert first.status_code == 201
    assert second.status_code == 429
    assert store.received_files(store.lookup(token)) == [('one.txt', 1)]


def test_docs_are_hidden(app):
    assert app.docs_url is None
    assert app.openapi_url is None
