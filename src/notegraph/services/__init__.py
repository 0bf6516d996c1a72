"""Services for the notegraph engine."""
