"""
Entry point for running the client as a module.

Usage:
    python -m cupid_client
"""

from cupid_client.cli import main

if __name__ == "__main__":
    main()
