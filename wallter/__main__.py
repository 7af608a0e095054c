"""
__main__.py

This file adds support for running wallter as a python module instead of invoking the "wallter" command line entrypoint.
"""

from wallter.cli import main


if __name__ == "__main__":
    main()
