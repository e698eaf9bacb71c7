"""Pytest configuration for sharegate tests."""
import pytest

from sharegate.config import Config, PathConfig, RateLimitConfig
from sharegate.services.resource_store import ResourceStore


@pytest.fixture
def roots(tmp_path):
    """Files root with a few files, empty share/upload roots, and a file outside them."""
    files = tmp_path / 'files'
    (files / 'b').mkdir(parents=True)
    (files / 'a.txt').write_text('alpha')
    (files / 'b' / 'c.txt').write_text('charlie')
    (files / 'other.txt').write_text('not shared')
    shares = tmp_path / 'shares'
    uploads = tmp_path / 'uploads'
    shares.mkdir()
    uploads.mkdir()
    (tmp_path / 'outside.txt').write_text('secret')
    return {'files': files, 'shares': shares, 'uploads': uploads, 'base': tmp_path}


@pytest.fixture
def store(roots):
    return ResourceStore(roots['files'], roots['shares'], roots['uploads'])


@pytest.fixture
def config(roots):
    return Config(
        paths=PathConfig(
            files_root=roots['files'],
            shares_root=roots['shares'],
            uploads_root=roots['uploads'],
        ),
        rate_limit=RateLimitConfig(enabled=False),
    )
