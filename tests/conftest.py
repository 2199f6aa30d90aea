"""Shared fixtures: a throwaway SQLite store, the fake remote and a Flask client."""

import base64

import pytest

from config import Config, CalDAVConfig, DatabaseConfig, SyncConfig
from infrastructure import CalendarStore
from monitoring import error_handler
from fake_remote import FakeRemoteRepository


CALDAV_USER = 'alice'
CALDAV_PASSWORD = 's3cret'


def basic_auth(username: str = CALDAV_USER, password: str = CALDAV_PASSWORD) -> dict:
    token = base64.b64encode(f'{username}:{password}'.encode('utf-8')).decode('ascii')
    return {'Authorization': f'Basic {token}'}


@pytest.fixture(autouse=True)
def reset_error_stats():
    error_handler.reset_stats()
    yield
    error_handler.reset_stats()


@pytest.fixture
def store(tmp_path):
    store = CalendarStore(f"sqlite:///{tmp_path / 'almanac.sqlite'}")
    store.create_schema()
    yield store
    store.dispose()


@pytest.fixture
def remote():
    return FakeRemoteRepository()


@pytest.fixture
def account(store):
    return store.create_account('https://dav.example.com/', 'bob', 'pw', 'Work')


@pytest.fixture
def app_config(tmp_path):
    return Config(
        database=DatabaseConfig(url=f"sqlite:///{tmp_path / 'app.sqlite'}"),
        caldav=CalDAVConfig(username=CALDAV_USER, password=CALDAV_PASSWORD),
        sync=SyncConfig(background_enabled=False, timeout_seconds=10)
    )


@pytest.fixture
def app(app_config, store, remote):
    from presentation import create_app

    app = create_app(app_config, store=store, remote=remote)
    app.config['TESTING'] = True
    yield app
    app.extensions['almanac']['executor'].shutdown()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers():
    return basic_auth()
