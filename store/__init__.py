"""SQLAlchemy persistence for the workshop state."""
