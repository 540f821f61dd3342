"""
Shared pytest fixtures

Temporary directories and secrets.yaml variants for the config tests.
"""

import tempfile
from pathlib import Path

import pytest


@pytest.fixture
def temp_dir() -> Path:
    """OS independent temporary directory"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_secrets_file(temp_dir: Path) -> Path:
    """secrets.yaml in sandbox mode"""
    secrets_content = """# test secrets.yaml
mode: sandbox

production:
  stripe_secret_key: "sk_live_prod_12345"

sandbox:
  stripe_secret_key: "sk_test_abcde"
  stripe_account: "acct_test_123"

exchange_rate:
  api_key: "rate_key_xyz"
  cache_ttl_sec: 600
"""
    secrets_path = temp_dir / "secrets.yaml"
    secrets_path.write_text(secrets_content, encoding="utf-8")
    return secrets_path


@pytest.fixture
def temp_secrets_file_production(temp_dir: Path) -> Path:
    """secrets.yaml in production mode"""
    secrets_content = """mode: production

production:
  stripe_secret_key: "sk_live_prod_12345"

sandbox:
  stripe_secret_key: "sk_test_abcde"

exchange_rate:
  api_key: "rate_key_prod"
"""
    secrets_path = temp_dir / "secrets_prod.yaml"
    secrets_path.write_text(secrets_content, encoding="utf-8")
    return secrets_path


@pytest.fixture
def temp_secrets_file_invalid_mode(temp_dir: Path) -> Path:
    """secrets.yaml with an unknown mode"""
    secrets_content = """mode: invalid_mode

sandbox:
  stripe_secret_key: "sk_test_abcde"

exchange_rate:
  api_key: "rate_key"
"""
    secrets_path = temp_dir / "secrets_invalid.yaml"
    secrets_path.write_text(secrets_content, encoding="utf-8")
    return secrets_path
