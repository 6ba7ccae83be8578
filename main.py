"""Near-field engine — dev launcher. Starts the API server in watch mode."""

import argparse
import os
import signal
import subprocess
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = os.getenv("PORT", "13013")


def main():
    parser = argparse.ArgumentParser(description="Near-field engine dev launcher")
    parser.add_argument("--config", type=Path, default=None,
                        help="JSON config file (default: $NEARFIELD_CONFIG or built-in defaults)")
    parser.add_argument("--provider", choices=["canned", "generative"], default=None,
                        help="Scene data provider to serve")
    args = parser.parse_args()

    # Pass choices on through the environment so the reloaded app sees them
    env = os.environ.copy()
    if args.config:
        env["NEARFIELD_CONFIG"] = str(args.config.resolve())
    if args.provider:
        env["NEARFIELD_PROVIDER"] = args.provider

    proc = subprocess.Popen(
        ["uvicorn", "nearfield.app:app", "--reload", "--host", HOST, "--port", PORT],
        cwd=ROOT, env=env,
    )

    def shutdown(*_):
        print("\nShutting down...")
        proc.terminate()
        proc.wait()
        sys.exit(0)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    print(f"Starting near-field engine on http://localhost:{PORT} ...")
    proc.wait()


if __name__ == "__main__":
    main()
