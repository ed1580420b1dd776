"""Allow ``python -m fwdproxy`` as a shorthand for the ``fwdproxy`` script."""

from .server import main

main()
