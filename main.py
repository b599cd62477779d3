#!/usr/bin/env python3
"""
Main entry point for MCP Host when running from a source checkout.
"""

import sys
from pathlib import Path

# Add the src directory to Python path
src_dir = Path(__file__).parent / "src"
sys.path.insert(0, str(src_dir))


def main():
    """Run the MCP Host server."""
    from mcp_host.main import main as run

    print("Starting MCP Host locally...")
    print("Access at: http://localhost:8000")
    print("Live updates: http://localhost:8000/updates")
    print("API docs: http://localhost:8000/docs")

    run()


if __name__ == "__main__":
    main()
