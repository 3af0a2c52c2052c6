"""Allow running clio with ``python -m clio``."""

from clio.main import main

main()
