"""Configuration, logging and text helpers."""
