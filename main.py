#!/usr/bin/env python3
"""
Main entry point for the Google Meet MCP monitoring server.

Examples:
  python main.py                     # Serve health and metrics endpoints
  python main.py --debug             # Run with debug logging
  python main.py --config custom.env # Use custom config file
"""

from gmeet_mcp.cli import main


if __name__ == "__main__":
    main()
