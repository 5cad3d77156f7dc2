"""Configuration parsing, validation and logging setup."""
