"""
Module entry point for: python -m quizmark

Allows running the engine directly as a module:
    python -m quizmark parse <file> [options]
    python -m quizmark batch <directory> [options]
    python -m quizmark serve [options]
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
