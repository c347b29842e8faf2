#!/usr/bin/env python3
"""
Pocket Bank Entry Point

Starts the FastAPI server with host, port and storage taken from
POCKETBANK_* environment variables (see pocket_bank/config.py).
"""

import sys

from pocket_bank.api import run_server


if __name__ == "__main__":
    try:
        run_server()
    except KeyboardInterrupt:
        print("\nShutting down Pocket Bank...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
