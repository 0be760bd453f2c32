"""enroll — browser-assisted credential enrollment for a command-line tool.

A short-lived loopback HTTP server presents a page, accepts an account name
and personal access token, validates the token against the remote API,
stores it, and hands the account name back to the waiting CLI process.
"""

__version__ = "1.0.0"
