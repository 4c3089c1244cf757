"""
HTTP surface: job status reads, scan creation, cancellation and the cron tick.
"""
