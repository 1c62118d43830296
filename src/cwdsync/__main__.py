"""Module entrypoint for `python -m cwdsync`."""

from cwdsync.cli import run

if __name__ == "__main__":
    raise SystemExit(run())
