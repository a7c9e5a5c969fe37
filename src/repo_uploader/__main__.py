"""Allow ``python -m repo_uploader``."""

from .cli import main

main()
