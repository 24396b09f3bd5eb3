"""Package entry point for ``python -m reel_composer``.

WHY: Python's ``-m`` flag looks for ``__main__.py`` inside the package.

HOW: Delegates to the CLI's main() and exits with its status.
"""

import sys

if __name__ == "__main__":
    from reel_composer.cli import main
    sys.exit(main())
