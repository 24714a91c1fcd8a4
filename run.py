#!/usr/bin/env python3
"""
Entity Workflows Entry Point

Starts the FastAPI server with the workflow orchestration engine. Host, port
and storage backend come from WORKFLOWS_* environment variables.
"""

import sys

from entity_workflows.api import run_server
from entity_workflows.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Entity Workflows...")
    print(f"Storage backend: {config.storage_backend}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Entity Workflows...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
