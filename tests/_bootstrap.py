"""Test helper that normalizes sys.path and environment defaults."""

from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


_DEFAULT_ENV_VARS: dict[str, str] = {
    "YOUTUBE_CLIENT_ID": "test-youtube-client",
    "YOUTUBE_CLIENT_SECRET": "test-youtube-secret",
    "YOUTUBE_OAUTH_REDIRECT_URI": "https://example.com/api/integrations/youtube/callback",
    "INSTAGRAM_APP_ID": "test-instagram-app",
    "INSTAGRAM_APP_SECRET": "test-instagram-secret",
    "INSTAGRAM_REDIRECT_URI": "https://example.com/api/integrations/instagram/callback",
    "TOKEN_ENCRYPTION_SECRET": "test-secret",
    "CRON_SECRET": "test-cron-secret",
    "DATABASE_PATH": str(Path(tempfile.gettempdir()) / "creator-sync-tests.db"),
}

for key, value in _DEFAULT_ENV_VARS.items():
    os.environ.setdefault(key, value)
