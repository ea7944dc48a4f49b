from sitemigrate.runtime.runner import ensure_database, main, print_paths, resolved_paths, run_server

__all__ = [
    "ensure_database",
    "main",
    "print_paths",
    "resolved_paths",
    "run_server",
]
