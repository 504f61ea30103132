"""
Module entry-point, equivalent to the ``quickqc-cli`` console script::

    python -m quickqc run -p 001
"""

from quickqc.cli import main

if __name__ == "__main__":  # pragma: no cover
    main()
