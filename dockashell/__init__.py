# Python version check: 3.11-3.13
import sys

if sys.version_info < (3, 11) or sys.version_info >= (3, 14):
    print(
        "Warning: Unsupported Python version {ver}, please use Python 3.11, 3.12, or 3.13.".format(
            ver=".".join(map(str, sys.version_info[:3]))
        ),
        file=sys.stderr,
    )

__version__ = "0.1.0"
