#!/usr/bin/env python3
"""
CompleteARR Web Service

Starts the FastAPI status/control service and the interval scheduler.

Usage:
    python completarr_web.py              # Start on port 5055
    python completarr_web.py --port 8080  # Custom port
    python completarr_web.py --host 0.0.0.0  # Listen on all interfaces
    python completarr_web.py --reload     # Enable auto-reload for development
"""

import argparse
import logging
import sys
from pathlib import Path

import uvicorn

# Ensure project root is in path
PROJECT_ROOT = Path(__file__).parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from core.logging_config import LOG_FORMAT, ThreadSafeStreamHandler
from web.config import DEFAULT_HOST, DEFAULT_PORT


def main():
    parser = argparse.ArgumentParser(
        description='CompleteARR Web Service',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python completarr_web.py                    # Start on localhost:5055
    python completarr_web.py --port 8080        # Use custom port
    python completarr_web.py --host 0.0.0.0     # Listen on all interfaces
    python completarr_web.py --reload           # Auto-reload on code changes
        """
    )
    parser.add_argument(
        '--host',
        default=DEFAULT_HOST,
        help=f'Host to bind to (default: {DEFAULT_HOST})'
    )
    parser.add_argument(
        '--port',
        type=int,
        default=DEFAULT_PORT,
        help=f'Port to listen on (default: {DEFAULT_PORT})'
    )
    parser.add_argument(
        '--reload',
        action='store_true',
        help='Enable auto-reload for development'
    )
    args = parser.parse_args()

    # Pass output goes to the console; each pass adds its own file handler
    console_handler = ThreadSafeStreamHandler()
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger = logging.getLogger()
    root_logger.addHandler(console_handler)
    root_logger.setLevel(logging.INFO)

    print("=" * 60)
    print("  CompleteARR Web Service")
    print("=" * 60)
    print(f"  URL: http://{args.host}:{args.port}")
    print(f"  Reload: {'Enabled' if args.reload else 'Disabled'}")
    print("=" * 60)
    print("")
    print("Press Ctrl+C to stop the server")
    print("")

    uvicorn.run(
        "web.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info"
    )


if __name__ == "__main__":
    main()
