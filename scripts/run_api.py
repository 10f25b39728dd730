#!/usr/bin/env python
"""
Start the Catalog Pricing API under uvicorn.

Usage:
    python scripts/run_api.py [--host HOST] [--port PORT] [--no-reload]
"""
import argparse
import os
import subprocess
import sys
from pathlib import Path


def main():
    parser = argparse.ArgumentParser(description="Run the Catalog Pricing API")
    parser.add_argument('--host', default='0.0.0.0')
    parser.add_argument('--port', type=int, default=8000)
    parser.add_argument('--no-reload', action='store_true', help="Disable auto-reload")
    parser.add_argument('--data-dir', default=None, help="Catalog snapshot directory")
    args = parser.parse_args()

    project_root = Path(__file__).parent.parent
    os.chdir(project_root)

    # Uvicorn imports the app in a child process, so hand it src and settings via the environment
    env = os.environ.copy()
    src_path = str(project_root / "src")
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [src_path, env.get("PYTHONPATH")]))
    if args.data_dir:
        env["CATALOG_PRICING_DATA_DIR"] = str(Path(args.data_dir).resolve())

    command = [
        sys.executable, "-m", "uvicorn",
        "catalog_pricing.api.main:app",
        "--host", args.host,
        "--port", str(args.port),
        "--log-level", env.get("CATALOG_PRICING_LOG_LEVEL", "info").lower(),
    ]
    if not args.no_reload:
        command.append("--reload")

    print(f"Starting Catalog Pricing API on {args.host}:{args.port}...")
    try:
        subprocess.run(command, env=env)
    except KeyboardInterrupt:
        print("\nAPI stopped.")


if __name__ == "__main__":
    main()
