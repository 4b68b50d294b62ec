"""cookspace - clone repositories into session workspaces and run commands with live control."""

__version__ = "0.1.0"
