"""Core wiring.

Builds the services, task lanes and dispatcher and exposes the single
entry point used by the command line and any other transport.
"""
