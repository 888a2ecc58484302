"""
toolhost

Launches and supervises tool-provider server processes, discovers the
tools they offer, gates every invocation behind a permission policy and
keeps an audit trail of every execution attempt.
"""

__version__ = "0.1.0"
