#!/usr/bin/env python3
"""
OpenClaw Admin - Entry Point
==============================
One-command startup for the OpenClaw gateway admin panel.

Usage:
    python app.py                              # manage the current directory
    python app.py --project-dir /opt/openclaw  # manage another compose project
    python app.py --port 3100                  # custom panel port

This script:
    1. Resolves the compose project directory
    2. Loads the project's .env into the process environment (ADMIN_PORT, ...)
    3. Loads admin.yaml for the web binding
    4. Starts the uvicorn server

Inside Docker (PROJECT_DIR set) the panel binds 0.0.0.0, otherwise
127.0.0.1 so it is only reachable from this machine.
"""

import os
import argparse
import uvicorn
from dotenv import load_dotenv


def main():
    """Parse arguments, load config, and start the web server."""

    # -- Parse command-line arguments ------------------------------------------
    parser = argparse.ArgumentParser(
        description="OpenClaw Admin - local gateway administration panel",
    )
    parser.add_argument(
        "--port", type=int, default=None,
        help="Port for the admin panel (overrides ADMIN_PORT and admin.yaml)",
    )
    parser.add_argument(
        "--host", type=str, default=None,
        help="Host binding address (overrides admin.yaml)",
    )
    parser.add_argument(
        "--project-dir", type=str, default=None,
        help="Compose project directory (default: PROJECT_DIR or the current directory)",
    )
    args = parser.parse_args()

    if args.project_dir:
        os.environ["ADMIN_PROJECT_DIR"] = os.path.abspath(args.project_dir)

    # -- Resolve project and load its .env --------------------------------------
    from provisioner import ProjectLayout
    from server.config import ConfigManager

    layout = ProjectLayout.from_environment()
    if os.path.exists(layout.env_file):
        load_dotenv(layout.env_file)

    config = ConfigManager(layout=layout).load()

    # Command-line args override ADMIN_PORT / admin.yaml
    default_host = "0.0.0.0" if layout.running_in_docker else "127.0.0.1"
    host = args.host or config["web"].get("host") or default_host
    port = args.port or int(os.environ.get("ADMIN_PORT") or config["web"].get("port") or 3000)

    # -- Print startup banner --------------------------------------------------
    print()
    print("  OpenClaw Admin")
    print(f"  Panel   : http://{host}:{port}")
    print(f"  Project : {layout.project_dir}")
    print()

    uvicorn.run(
        "server.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    main()
