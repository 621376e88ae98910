# tests/conftest.py
from __future__ import annotations

import os

# api.py builds its collaborators at import time; give it a credential pool
# and keep persistence in memory regardless of the developer's shell.
os.environ.setdefault("RESUME_SCORER_GEMINI_API_KEYS", "test-key-0,test-key-1,test-key-2")
os.environ.pop("RESUME_SCORER_MONGO_URL", None)
