"""
Main entry point for the claude-sync CLI.
"""

from claude_sync.cli import app


def main() -> None:
    """Main function for the claude-sync CLI."""
    app(prog_name="claude-sync")


if __name__ == "__main__":
    main()
