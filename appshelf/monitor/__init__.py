"""Terminal views over the record store and event journal.

Modules
-------
renderer
    ``RecordRenderer`` turns records and events into Rich renderables.
"""
