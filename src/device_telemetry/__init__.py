"""Vendor device telemetry collection.

Polls printer/copier fleet management platforms (Canon, Xerox, HP PrintOS,
FMAudit/Printanista), normalizes their meter readings into one metric model
and keeps an audit trail of every collection attempt.
"""

__version__ = "0.4.0"
