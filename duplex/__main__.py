"""Allow `python -m duplex`."""

from .cli import main

if __name__ == "__main__":
    main()
