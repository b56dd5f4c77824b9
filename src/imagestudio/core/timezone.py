"""UTC timezone enforcement.

Sets the TZ environment variable to UTC so per-day output directories and
naive UTC timestamps agree across environments.
"""

import os

os.environ["TZ"] = "UTC"
