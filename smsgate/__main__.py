from __future__ import annotations
from smsgate.cli import main

if __name__ == "__main__":
    main()
