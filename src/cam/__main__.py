"""Allow running as `python -m cam`."""

from cam.rest_server import main

main()
