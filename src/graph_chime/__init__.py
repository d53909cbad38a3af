"""graph-chime: audible alerts for new Teams messages, mentions and meeting invitations."""

__all__ = ["__version__"]

__version__ = "0.1.0"
