"""Mock controller for development and integration tests."""
