"""
Legt beim ersten Setup eine .env-Datei mit den lokalen Verbindungsparametern an.

Eine vorhandene Datei wird nie überschrieben.
"""

import logging
from pathlib import Path
from typing import Optional

from nutridb.core.config import config

logger = logging.getLogger(__name__)

ENV_TEMPLATE = """# Database
DATABASE_URL="{database_url}"
DIRECT_URL="{database_url}"

# Supabase (optional for local development)
NEXT_PUBLIC_SUPABASE_URL=""
NEXT_PUBLIC_SUPABASE_ANON_KEY=""

# Google Generative AI (optional)
GOOGLE_GENERATIVE_AI_API_KEY=""
"""


def render_env_template(database_url: Optional[str] = None) -> str:
    return ENV_TEMPLATE.format(database_url=database_url or config.default_database_url())


def ensure_env_file(path: Optional[Path] = None, database_url: Optional[str] = None) -> bool:
    """
    Schreibt die .env-Datei, falls sie noch nicht existiert.

    Returns:
        True, wenn die Datei neu angelegt wurde
    """
    path = Path(path or config.ENV_FILE)
    if path.exists():
        logger.debug(".env-Datei existiert bereits: %s", path)
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_env_template(database_url), encoding="utf-8")
    logger.info(".env-Datei angelegt: %s", path)
    return True
