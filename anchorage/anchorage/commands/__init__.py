"""CLI command implementations (return exit codes; cli.py only parses options)."""
