"""
Package entry point.

Allows running the application via:

    python -m tucache

This simply forwards execution to tucache.cli.main().
"""

from tucache.cli import main

if __name__ == "__main__":
    main()
