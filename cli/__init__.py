"""CLI package for the Logware session client

This package provides the ``logware-auth`` command-line interface for
signing in to the Logware dashboard API and inspecting the session.
"""
