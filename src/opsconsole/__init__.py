"""opsconsole — operator console core for remote servers."""

__version__ = "0.1.0"
