#!/usr/bin/env python3
"""CompleteARR - keep Sonarr series and Radarr movies in the right root folder.

Usage:
    python completarr.py              # Run one reconciliation pass
    python completarr.py --dry-run    # Log decisions without changing anything
    python completarr.py --verbose    # Enable debug logging
    python completarr.py --loop       # Repeat every run_interval_seconds
"""
import sys
import os

from core.app import default_config_file


def main():
    """Main entry point for CompleteARR."""
    settings_path = default_config_file()

    if not os.path.exists(settings_path):
        print(f"No configuration found at {settings_path}.")
        print("Create completarr_settings.json (or set COMPLETARR_CONFIG_DIR) and try again.")
        return 2

    from core.app import main as app_main
    return app_main()


if __name__ == "__main__":
    sys.exit(main() or 0)
