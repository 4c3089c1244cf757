"""
CiteScan scan-processing engine.

Resumable, poll-driven pipeline that crawls a site, derives topic clusters,
scores citation readiness and emits a summary artifact plus audit report.
"""
