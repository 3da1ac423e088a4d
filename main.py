"""Main entry point for the store monitoring worker."""

from storewatch.cli import main


if __name__ == "__main__":
    raise SystemExit(main())
