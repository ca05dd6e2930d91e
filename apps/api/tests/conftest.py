from __future__ import annotations

import os

# app.main instruments FastAPI at import time, so tracing has to be on before any test imports it.
os.environ.setdefault("OTEL_ENABLED", "true")
