"""Status reporting to the Dash backup tracking service."""
