import io

import paramiko
import pytest

from models.settings import BrancherSettings
from tests.fakes import FakeGitOperator, FakeRemote, FakeSecretSource, SnsSigner, build_handler

REPOSITORY = "git@github.com:mbonig/rds-tools.git"


@pytest.fixture(scope="session")
def private_key_pem():
    key = paramiko.RSAKey.generate(2048)
    buffer = io.StringIO()
    key.write_private_key(buffer)
    return buffer.getvalue()


@pytest.fixture
def workspace_root(tmp_path):
    return tmp_path / "work"


@pytest.fixture
def settings(workspace_root):
    return BrancherSettings(repository=REPOSITORY, workspace_root=str(workspace_root), api_key="s3cret")


@pytest.fixture
def secret_source(private_key_pem):
    return FakeSecretSource(private_key_pem)


@pytest.fixture
def remote():
    return FakeRemote(default_branch="main")


@pytest.fixture
def fake_git(remote):
    return FakeGitOperator(remote)


@pytest.fixture
def handler(settings, secret_source, fake_git):
    return build_handler(settings, secret_source, fake_git)


@pytest.fixture(scope="session")
def sns_signer():
    return SnsSigner()
