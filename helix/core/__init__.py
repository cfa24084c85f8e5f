"""Configuration, errors and logging shared by every layer."""
