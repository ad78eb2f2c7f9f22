"""Allow running devcli with ``python -m devcli``."""

from .cli import main

if __name__ == "__main__":
    main()
