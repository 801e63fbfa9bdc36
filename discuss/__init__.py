"""Client-side real-time team chat core for the CRM Discuss module."""

__version__ = "0.1.0"
