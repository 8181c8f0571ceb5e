import pytest

from fakes import ACCOUNT, BASE_URL, FakeSession, transport_factory
from keygen_cli.api import KeygenClient
from keygen_cli.config import ProfileStore
from keygen_cli.resolver import ENV_VARS
from keygen_cli.transport import Transport


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    for names in ENV_VARS.values():
        for name in names:
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("KEYGEN_CLI_HOME", str(tmp_path / "home"))
    # keep ./.env lookups away from the real working tree
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.chdir(work)


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def transport(session):
    return Transport(BASE_URL, ACCOUNT, "tok-123", session=session)


@pytest.fixture
def client(transport):
    return KeygenClient(transport)


@pytest.fixture
def store(tmp_path):
    return ProfileStore(tmp_path / "home")


@pytest.fixture
def factory(session):
    return transport_factory(session)
