"""
Entry point for running the converter as a module.

Usage:
    python -m eml_batch_pdf -i ./emails -o ./pdfs
"""

import sys
from .cli import main

if __name__ == "__main__":
    sys.exit(main())
