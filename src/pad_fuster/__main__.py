"""Main entry point for the pad_fuster package."""
from pad_fuster.cli import cli


def main():
    """Main entry point function."""
    cli(auto_envvar_prefix="PAD_FUSTER")


if __name__ == "__main__":
    main()
