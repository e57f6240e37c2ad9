"""Allow ``python -m outpost``."""

from outpost.cli.main import main

if __name__ == "__main__":
    main()
