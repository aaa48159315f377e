"""Allow ``python -m kickvm``."""

from kickvm.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
