"""Rich terminal views for executions, metrics, policies and insights."""
