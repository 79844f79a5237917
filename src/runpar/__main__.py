"""Allow ``python -m runpar``."""

from runpar.cli.app import main

if __name__ == "__main__":
    main()
