"""Allow ``python -m albacme``."""

from albacme.cli.main import main

main()
