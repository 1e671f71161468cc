#!/usr/bin/env python3
"""
Container entrypoint: run the release phase, then hand the process to gunicorn.

Environment:
  PORT             listen port (default 8080)
  WEB_CONCURRENCY  gunicorn workers (default 2)
  SKIP_RELEASE=1   start the server without migrating or seeding

Usage:
    python scripts/start.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def gunicorn_argv(port: str, workers: str) -> list[str]:
    # --preload imports app.wsgi once; create_app disposes the engine in each forked worker.
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", workers,
        "--timeout", "60",
        "--preload",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    port = (os.environ.get("PORT") or "8080").strip()
    if not port.isdigit() or not 1 <= int(port) <= 65535:
        sys.exit(f"Invalid PORT value '{port}'")
    workers = (os.environ.get("WEB_CONCURRENCY") or "2").strip()

    if os.environ.get("SKIP_RELEASE") != "1":
        from scripts.release import run_release

        try:
            run_release()
        except Exception as e:
            sys.exit(f"Release failed: {e}")

    print(f"Starting gunicorn on :{port} with {workers} workers", flush=True)
    os.execvp("gunicorn", gunicorn_argv(port, workers))


if __name__ == "__main__":
    main()
