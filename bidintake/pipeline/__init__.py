"""Document dispatch and processing queue.

Each document moves PENDING -> PROCESSING -> COMPLETED | FAILED and the
status field is the only record of the outcome.
"""
