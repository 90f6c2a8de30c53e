"""
Allow running pathgroup as a module:

    python -m pathgroup <program.s> [options]

Delegates to pathgroup.cli:main().
"""
import sys
from .cli import main

sys.exit(main())
