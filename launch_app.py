from __future__ import annotations

import os
import runpy
import sys
from pathlib import Path

import uvicorn


PROJECT_ROOT = Path(__file__).resolve().parent
APP_DIR = PROJECT_ROOT / "app"
HOST = os.environ.get("SHIFT_GRID_HOST", "127.0.0.1")
PORT = int(os.environ.get("SHIFT_GRID_PORT", "8000"))


def seed_sample_directory() -> None:
    runpy.run_path(str(APP_DIR / "scripts" / "seed_directory.py"), run_name="__main__")


def launch_app(argv: list[str]) -> int:
    if "--seed" in argv:
        seed_sample_directory()
    print(f"[launcher] Starting Shift Grid API on http://{HOST}:{PORT} ...")
    uvicorn.run("api:app", app_dir=str(APP_DIR), host=HOST, port=PORT)
    return 0


if __name__ == "__main__":
    sys.exit(launch_app(sys.argv[1:]))
