"""Application constants and defaults"""

# Group names
LIGHTHOUSE_GROUP = 'lighthouse'
VISUAL_GROUP = 'visual'
GROUPS = (LIGHTHOUSE_GROUP, VISUAL_GROUP)

# Default remote object names, appended to STORAGE_BASE_URL
DEFAULT_SOURCE_FILES = {
    LIGHTHOUSE_GROUP: [
        'lighthouse-desktop.db',
        'lighthouse-mobile.db',
    ],
    VISUAL_GROUP: [
        'visual-chromium.db',
        'visual-firefox.db',
        'visual-webkit.db',
    ],
}
DEFAULT_STORAGE_BASE_URL = 'http://localhost:9000/test-results'

# Tables served by the query endpoints
DEFAULT_LIGHTHOUSE_TABLE = 'lighthouse_results'
DEFAULT_BASELINE_TABLE = 'baselines'

# Column names tried, in order, to sort rows newest first
TIMESTAMP_COLUMNS = ('timestamp', 'created_at')

# Refresh timing
DEFAULT_REFRESH_INTERVAL_MINUTES = 15
DEFAULT_FETCH_RETRIES = 3
DEFAULT_FETCH_RETRY_DELAY = 1.0

DEFAULT_PORT = 5000
DATA_DIR_NAME = 'merged-results'
DOWNLOADS_DIR_NAME = 'downloads'
