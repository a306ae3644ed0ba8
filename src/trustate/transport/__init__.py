"""HTTP transport for the Trustate service."""
