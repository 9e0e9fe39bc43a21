"""
Generators — pure renderers from (spec, secrets) to artifact text.

No I/O: each function returns the file content as a string.
"""
