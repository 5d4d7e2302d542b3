"""Module entrypoint for ``python -m jjwatch``.

All argument parsing and runtime setup happen in ``jjwatch.cli``.
"""

from .cli import main


if __name__ == "__main__":
    main()
