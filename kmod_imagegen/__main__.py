"""Entry point for ``python -m kmod_imagegen``."""

from kmod_imagegen.cli import app

if __name__ == "__main__":
    app()
