"""AuthKit — multi-tenant authentication backend.

Platform operators create projects; each project gets isolated
development/production environments with their own key pairs, and
each environment exposes signup/signin/magic-link auth for its own
user pool.
"""

__version__ = "0.1.0"
