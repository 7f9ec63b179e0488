"""sheetsync - Bidirectional sync between local grid files and Google Sheets."""

__version__ = "0.1.0"
