"""Gmail to Google Drive sync for financial documents."""

__version__ = "0.1.0"
