#!/usr/bin/env python3
"""wildcheck main entry point.

Usage::

    cat subdomains.txt | python main.py filter
    python main.py filter -i subdomains.txt -r resolvers.txt --mode filtered
    python main.py version
    python main.py config
"""

from wildcheck.cli import main

if __name__ == "__main__":
    main()
