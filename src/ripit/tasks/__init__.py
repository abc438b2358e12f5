"""Task execution lanes.

The concurrent lane runs any number of tasks at once, the sequential lane
runs queued tasks strictly one after another. The dispatcher routes task
envelopes to the lane owning their type.
"""
