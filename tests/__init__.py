import os
import sys

# Add the parent directory to the path so we can import modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Keep test runs from writing log files or reading a developer's queue tuning
os.environ["LOG_TO_FILE"] = "false"
os.environ.pop("QUEUE_RECLAIM_AFTER", None)
