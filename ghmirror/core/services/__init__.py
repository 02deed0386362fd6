"""Row-level services and job handlers."""
