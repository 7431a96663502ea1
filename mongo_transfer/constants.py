"""
Constants and configuration values for mongo-transfer
Centralized location for magic numbers and default values
"""

# ============================================================================
# MongoDB Connection Settings
# ============================================================================

# Default connection timeout in milliseconds
DEFAULT_MONGO_TIMEOUT = 5000

# Shorter timeout for quick checks (e.g., listing hosts status)
QUICK_CHECK_TIMEOUT = 1000

# Timeout for the saslSupportedMechs probe in milliseconds
AUTH_DETECT_TIMEOUT = 5000

# Database used for authentication when the URI names none
DEFAULT_AUTH_SOURCE = 'admin'

# Preferred SASL mechanisms, strongest first
PREFERRED_AUTH_MECHANISMS = ('SCRAM-SHA-256', 'SCRAM-SHA-1')

# Databases skipped by a "dump everything" native export
SYSTEM_DATABASES = ('admin', 'local', 'config')

# ============================================================================
# External Tools
# ============================================================================

MONGODUMP = 'mongodump'
MONGORESTORE = 'mongorestore'

# Where users can get mongodump/mongorestore
TOOL_DOWNLOAD_URL = 'https://www.mongodb.com/try/download/database-tools'

# Timeout for `<tool> --version` in seconds
TOOL_VERSION_TIMEOUT = 5

# Timeout for a mongorestore --dryRun preview in seconds
PREVIEW_TIMEOUT = 30

# Recent stderr lines kept for error reports
STDERR_BUFFER_LINES = 10

# Recent stderr lines kept for preview error reports
PREVIEW_BUFFER_LINES = 20

# Seconds between cancellation checks while waiting on a subprocess
PROCESS_POLL_SECONDS = 0.2

# Seconds to wait for a terminated tool before killing it
PROCESS_TERMINATE_GRACE = 5

# ============================================================================
# Transfer Loop Settings
# ============================================================================

# Records between pause/cancel checks
POLL_INTERVAL = 100

# Records between progress events
PROGRESS_INTERVAL = 1000

# Documents per insert_many batch on native import
IMPORT_BATCH_SIZE = 100

# Documents per _id existence lookup on dry runs
DRY_RUN_BATCH_SIZE = 500

# Maximum directory depth searched for compressed dump payloads
GZIP_SCAN_DEPTH = 5

# ============================================================================
# Archive Layout
# ============================================================================

ARCHIVE_EXTENSION = '.archive'
ZIP_EXTENSION = '.zip'
GZIP_EXTENSION = '.gz'

# Extensions stripped when a batch output becomes a directory
STRIPPED_EXTENSIONS = (ARCHIVE_EXTENSION, GZIP_EXTENSION)

MANIFEST_NAME = 'manifest.json'
MANIFEST_VERSION = '1.0'
DOCUMENTS_ENTRY = 'documents.ndjson'
INDEXES_ENTRY = 'indexes.json'

# Placeholder for redacted passwords
MASK_PLACEHOLDER = '***'

# ============================================================================
# Formatting Thresholds
# ============================================================================

# Threshold for using 'K' suffix (thousands)
FORMAT_THOUSANDS_THRESHOLD = 1_000

# Threshold for using 'M' suffix (millions)
FORMAT_MILLIONS_THRESHOLD = 1_000_000
