"""Core domain package for otpwatch.

Core contains pattern matching, extraction, the watermark and the poll
scheduler without any SQLite, clipboard or notification code, keeping the
detection logic portable.
"""
