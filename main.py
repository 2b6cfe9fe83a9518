#!/usr/bin/env python3
"""
FIA document bot entry point for container deployments.

Runs the poll loop in daemon mode; extra CLI flags are passed through, e.g.
``python main.py --dry-run --log-level DEBUG``.
"""

import os
import sys


def main():
    """Start the bot daemon with the health server on $PORT if provided."""
    args = sys.argv[1:]

    port_env = os.environ.get("PORT")
    if port_env and "--port" not in args:
        try:
            args += ["--port", str(int(port_env))]
        except (ValueError, TypeError):
            print(f"Warning: Invalid PORT value '{port_env}', using HEALTH_PORT")

    from fiabot.run import main as run_main

    sys.argv = ["main.py", "--mode", "daemon", *args]
    run_main()


if __name__ == "__main__":
    main()
