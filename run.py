#!/usr/bin/env python3
"""
Bank Ledger Entry Point

Starts the FastAPI server with the bank ledger system.
"""

import sys

from bank_ledger.api import run_server
from bank_ledger.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Bank Ledger...")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Bank Ledger...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
