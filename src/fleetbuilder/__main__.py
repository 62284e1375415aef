"""
Fleet Builder - Main entry point, `python -m fleetbuilder`
"""

from .cli import main

if __name__ == "__main__":
    main()
