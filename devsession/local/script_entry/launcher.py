"""
This is a minimal entry point script for a combined development session.

Its sole responsibility is to run the 'start-all' command under a
recognizable process title, for use as 'python -m devsession.local.script_entry.launcher'.
"""
from devsession.main import start_all


if __name__ == "__main__":
    start_all()
