"""Root conftest — sets env vars BEFORE any wafilebot module is imported.

Points WAFILEBOT_DIR at a throwaway directory and clears credentials so a
developer's real .env values never leak into tests.
"""

import os
import tempfile

# Force-set (not setdefault) to prevent real env vars from leaking into tests
os.environ["WAFILEBOT_DIR"] = tempfile.mkdtemp(prefix="wafilebot-test-")
os.environ["WAFILEBOT_BRIDGE_URL"] = "ws://127.0.0.1:3100/ws"
for _name in (
    "WAFILEBOT_BRIDGE_TOKEN",
    "WAFILEBOT_ADMIN_TOKEN",
    "WAFILEBOT_ADMIN_PORT",
    "GEMINI_API_KEY",
    "GOOGLE_CLOUD_BUCKET_NAME",
    "GOOGLE_CLOUD_PROJECT_ID",
    "GOOGLE_CLOUD_CLIENT_EMAIL",
    "GOOGLE_CLOUD_PRIVATE_KEY",
):
    os.environ.pop(_name, None)
