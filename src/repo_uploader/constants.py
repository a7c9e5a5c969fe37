"""Constants for repo-uploader."""

# Application directory name (under the platform config dir)
APP_NAME = "repo-uploader"
APP_AUTHOR = "repo-uploader"

# Configuration files (inside the user config dir)
CONFIG_FILE = "config.yaml"
STATE_DIR = "state"

# Checkpoint file naming
STATE_FILE_PREFIX = "upload-state-"
STATE_FILE_SUFFIX = ".json"
LOCK_FILE_SUFFIX = ".lock"

# Project-local ignore file (gitignore syntax)
IGNORE_FILE = ".uploadignore"

# Remote defaults
DEFAULT_API_URL = "https://api.github.com"
DEFAULT_WEB_URL = "https://github.com"
DEFAULT_BRANCH = "main"
API_VERSION = "2022-11-28"

# Regular, non-executable file
BLOB_FILE_MODE = "100644"

# Commit messages
INITIAL_COMMIT_MESSAGE = "Initial commit from repo-uploader"
BATCH_COMMIT_MESSAGE = "Upload from repo-uploader - {timestamp}"
ADD_FILE_MESSAGE = "Add {path}"

# Progress breakpoints (percent) consumed by progress listeners
PROGRESS_PREPARING = 5
PROGRESS_ENUMERATED = 10
PROGRESS_RESUMED = 12
PROGRESS_REMOTE_RESOLVED = 15
PROGRESS_BOOTSTRAP_START = 18
PROGRESS_FILES_START = 20
PROGRESS_FILES_SPAN = 60
PROGRESS_COMMITTING = 85
PROGRESS_UPDATING_REF = 95
PROGRESS_DONE = 100

# Version
UPLOADER_VERSION = "0.1.0"
