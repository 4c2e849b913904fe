"""qbridge — drive an interactive chat CLI through a pseudo-terminal."""

__version__ = "0.1.0"
