"""Entrypoint running the DLCut command-line interface."""

from dlcut.cli import main


if __name__ == "__main__":
    main()
