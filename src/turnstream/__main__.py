"""
Entry point for `python -m turnstream`.
"""

from .cli import main

if __name__ == "__main__":
    main()
