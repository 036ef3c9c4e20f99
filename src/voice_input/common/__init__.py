"""Configuration, logging setup, shared types and adapters for Voice Input."""
