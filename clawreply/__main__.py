"""
Entry point for running clawreply as a module: python -m clawreply
"""

from clawreply.cli.commands import app

if __name__ == "__main__":
    app()
