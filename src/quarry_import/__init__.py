"""Spreadsheet import/export with change detection for a content store."""
