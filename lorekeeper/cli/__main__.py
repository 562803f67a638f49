"""Allow ``python -m lorekeeper.cli`` execution."""

from lorekeeper.cli.knowledge import main

main()
