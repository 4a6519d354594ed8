"""Root conftest: isolates CHAT_* settings and loads .env.test before any module imports."""
from __future__ import annotations

import os
from pathlib import Path

# A developer's shell (or .env) must not leak broker URLs or tokens into tests.
for _key in [k for k in os.environ if k.startswith("CHAT_")]:
    del os.environ[_key]

_env_test = Path(__file__).resolve().parent / ".env.test"
if _env_test.exists():
    for raw in _env_test.read_text().splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        key, _, value = line.partition("=")
        os.environ[key.strip()] = value.strip()
