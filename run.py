#!/usr/bin/env python3
"""
SV Bank Entry Point

Starts the FastAPI server with the configured storage backend.
"""

import sys

from svbank.api import run_server
from svbank.config import get_config


if __name__ == "__main__":
    settings = get_config()
    print("Starting SV Bank transaction core...")
    print(f"Storage backend: {settings.storage_backend} ({settings.database_path})")
    print(f"API available at: http://localhost:{settings.api_port}")
    print(f"Documentation at: http://localhost:{settings.api_port}/docs")
    print()

    try:
        run_server(debug=False)
    except KeyboardInterrupt:
        print("\nShutting down SV Bank...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
