"""HTTP access to the web UI that serves job payloads."""
