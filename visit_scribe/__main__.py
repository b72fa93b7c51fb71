#!/usr/bin/env python3
"""
Visit Scribe - Package Entry Point
python -m visit_scribe で実行
"""

from visit_scribe.presentation.cli import main

if __name__ == "__main__":
    main()
