"""Application services for browsing, transferring, importing and exporting pod data."""
