"""
Convenience entry point for running roomgrid as a module.

Usage: python -m roomgrid [command] [options]
"""

from .cli.app import app

if __name__ == "__main__":
    app()
