"""ConsentHub - consent, privacy notice and data subject request service."""

__version__ = "0.1.0"
