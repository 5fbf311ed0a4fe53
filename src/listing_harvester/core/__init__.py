"""Core infrastructure: persistence, logging, events and the error hierarchy."""
