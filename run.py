#!/usr/bin/env python3
"""
Peer Lending Entry Point

Starts the FastAPI server on the configured host and port.
"""

import sys

import uvicorn

from peer_lending.api import create_app
from peer_lending.config import get_config


def run_server(host: str, port: int, debug: bool = False):
    """Run the API server"""
    uvicorn.run(
        create_app(),
        host=host,
        port=port,
        log_level="debug" if debug else "info"
    )


if __name__ == "__main__":
    config = get_config()
    print("Starting Peer Lending API...")
    print(f"Storage: {config.storage_type}")
    print(f"API available at: http://{config.api_host}:{config.api_port}")
    print(f"Documentation at: http://{config.api_host}:{config.api_port}/docs")
    print()
    
    try:
        run_server(host=config.api_host, port=config.api_port)
    except KeyboardInterrupt:
        print("\nShutting down Peer Lending API...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
