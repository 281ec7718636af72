# =============================================================================
# ministry_core/data/backend_config.py
# Backend and local-store configuration
# =============================================================================
"""
Loads the Supabase connection settings.

Looked up in order:
1. Streamlit secrets (.streamlit/secrets.toml)
       [supabase]
       url = "https://your-project.supabase.co"
       key = "your-anon-key"
2. Environment variables SUPABASE_URL / SUPABASE_KEY
"""

from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import streamlit as st

from ministry_core.errors import ConfigurationError
from ministry_core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MIRROR_PATH = Path("local_data") / "ministry_mirror.db"


@dataclass(frozen=True)
class BackendConfig:
    """Connection settings for the managed backend and the on-device mirror."""
    url: str
    key: str
    mirror_path: Path = DEFAULT_MIRROR_PATH
    member_photos_bucket: str = "member_photos"
    receipts_bucket: str = "receipts"
    page_size: int = 1000  # Supabase caps a single select at 1000 rows


def _secrets_section() -> Dict[str, Any]:
    try:
        if "supabase" in st.secrets:
            return dict(st.secrets["supabase"])
    except (FileNotFoundError, KeyError):
        # No secrets.toml at all
        pass
    except Exception as e:
        logger.debug(f"Streamlit secrets unavailable: {e}")
    return {}


def load_backend_config(environ: Optional[Mapping[str, str]] = None) -> BackendConfig:
    """
    Build the BackendConfig from Streamlit secrets, then the environment.

    Raises:
        ConfigurationError: when the backend URL or key is missing
    """
    env = os.environ if environ is None else environ
    secrets = _secrets_section()

    url = secrets.get("url") or env.get("SUPABASE_URL", "")
    key = secrets.get("key") or env.get("SUPABASE_KEY", "")

    if not url:
        raise ConfigurationError("Supabase URL is not configured", config_key="SUPABASE_URL")
    if not key:
        raise ConfigurationError("Supabase key is not configured", config_key="SUPABASE_KEY")

    mirror_path = secrets.get("mirror_path") or env.get("MINISTRY_MIRROR_PATH")
    page_size = secrets.get("page_size") or env.get("MINISTRY_PAGE_SIZE")

    try:
        page_size = int(page_size) if page_size else BackendConfig.page_size
    except ValueError:
        raise ConfigurationError(
            f"Page size must be an integer, got {page_size!r}",
            config_key="MINISTRY_PAGE_SIZE",
            expected_type="int",
        )

    return BackendConfig(
        url=url,
        key=key,
        mirror_path=Path(mirror_path) if mirror_path else DEFAULT_MIRROR_PATH,
        member_photos_bucket=secrets.get("member_photos_bucket", BackendConfig.member_photos_bucket),
        receipts_bucket=secrets.get("receipts_bucket", BackendConfig.receipts_bucket),
        page_size=page_size,
    )
