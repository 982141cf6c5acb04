"""Relay service: settings, simulated backends, HTTP app and CLI."""
