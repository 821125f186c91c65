"""Allow running the CLI as `python -m ipfsd_ctl.cli`."""

from .main import main

if __name__ == "__main__":
    main()
