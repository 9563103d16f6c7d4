"""Prime Portal API."""
