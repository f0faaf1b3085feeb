"""
Tests für die .env-Materialisierung beim ersten Setup.
"""

from nutridb.core.config import config
from nutridb.environment.envfile import ensure_env_file


def test_env_file_is_created_from_template(temp_env_file):
    assert ensure_env_file() is True

    content = temp_env_file.read_text()
    assert f'DATABASE_URL="{config.default_database_url()}"' in content
    assert f'DIRECT_URL="{config.default_database_url()}"' in content
    assert "GOOGLE_GENERATIVE_AI_API_KEY" in content


def test_existing_env_file_is_never_overwritten(temp_env_file):
    temp_env_file.write_text('DATABASE_URL="postgresql://custom"\n')

    assert ensure_env_file() is False
    assert temp_env_file.read_text() == 'DATABASE_URL="postgresql://custom"\n'


def test_custom_database_url(tmp_path):
    path = tmp_path / "nested" / ".env"

    assert ensure_env_file(path, database_url="postgresql://u:p@db:5432/x") is True
    assert 'DATABASE_URL="postgresql://u:p@db:5432/x"' in path.read_text()


def test_default_database_url_uses_db_parameters():
    url = config.default_database_url()
    assert url.startswith(f"postgresql+psycopg2://{config.DB_USER}:")
    assert url.endswith(f"/{config.DB_NAME}")
