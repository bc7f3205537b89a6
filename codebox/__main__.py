"""
Entry point for running codebox as a module: python -m codebox
"""

from codebox.cli.commands import app

if __name__ == "__main__":
    app()
