"""SheetLens - preview and approval engine for AI-proposed spreadsheet edits."""

__version__ = "0.1.0"
