"""Event bus, session controller and the Qt window."""
