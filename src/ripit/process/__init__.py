"""External process execution.

Abortable subprocess wrappers and the parsers that turn their streaming
output into progress records.
"""
