#!/usr/bin/env python3
"""
ResolveSuite Entry Point

Starts the FastAPI server with the complaint management system.
"""

import sys

import uvicorn

from resolve_core.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting ResolveSuite...")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        uvicorn.run(
            "resolve_core.api_modular:app",
            host=config.api_host,
            port=config.api_port,
            log_level=config.log_level.lower(),
        )
    except KeyboardInterrupt:
        print("\nShutting down ResolveSuite...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
