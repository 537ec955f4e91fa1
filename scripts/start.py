#!/usr/bin/env python3
"""
Container entrypoint: run the release phase, then hand the process over to
gunicorn serving `app.wsgi:app`.

Environment:
  PORT              listen port (default 8080)
  WEB_CONCURRENCY   gunicorn workers (default 2)
  GUNICORN_TIMEOUT  worker timeout in seconds (default 60)
  SKIP_RELEASE      set to 1 to start without migrating/seeding
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

DEFAULT_PORT = 8080


def _port() -> int:
    raw = (os.environ.get("PORT") or "").strip()
    if not raw:
        print(f"PORT not set; using {DEFAULT_PORT}", flush=True)
        return DEFAULT_PORT
    try:
        port = int(raw)
    except ValueError:
        port = 0
    if not 1 <= port <= 65535:
        print(f"ERROR: PORT must be an integer between 1 and 65535 (got {raw!r}).", flush=True)
        sys.exit(1)
    return port


def gunicorn_argv(port: int) -> list[str]:
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", os.environ.get("WEB_CONCURRENCY", "2"),
        "--timeout", os.environ.get("GUNICORN_TIMEOUT", "60"),
        # engines are disposed in each worker after fork
        "--preload",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    port = _port()

    if (os.environ.get("SKIP_RELEASE") or "").strip() != "1":
        from scripts.release import run_release

        try:
            run_release()
        except Exception as e:
            print(f"Release failed: {e}", flush=True)
            sys.exit(1)

    argv = gunicorn_argv(port)
    print(f"Starting gunicorn on :{port}", flush=True)
    os.execvp(argv[0], argv)


if __name__ == "__main__":
    main()
