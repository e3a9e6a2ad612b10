"""
Entry point for running loopwarden as a module.

Usage:
    python -m loopwarden report LOOP_ID
    python -m loopwarden resume LOOP_ID "reason"
    python -m loopwarden memory stats

This is equivalent to:
    python -m loopwarden.cli.overseer_cli [args]
"""


def main():
    from loopwarden.cli.overseer_cli import main as cli_main
    cli_main()


if __name__ == "__main__":
    main()
