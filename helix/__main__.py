"""Allow `python -m helix`."""
from helix.cli.main import main

if __name__ == "__main__":
    main()
