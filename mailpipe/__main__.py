"""Allow ``python -m mailpipe`` to start the sync service."""

from mailpipe.agent.supervisor import main

if __name__ == "__main__":
    main()
