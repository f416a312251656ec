"""Entry point for `python -m sauna`.

Usage:
    python -m sauna [options] PROMPT
"""

from sauna.cli import main

if __name__ == "__main__":
    main()
