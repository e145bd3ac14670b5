"""Frame dispatch, connection sessions and event publishing for the GT06 parser node."""
