"""Application-wide constants.

This module centralizes all magic numbers and configuration constants
to ensure a single source of truth and easier maintenance.

Constants are organized by category. Most of them are defaults for a
matching field on Settings and can be overridden via environment variables.
"""

# =============================================================================
# Crawler Configuration
# =============================================================================

# Timeout for a single page fetch (seconds)
DEFAULT_CRAWLER_TIMEOUT_SECONDS = 15.0

# User-Agent sent with every crawl request
DEFAULT_CRAWLER_USER_AGENT = (
    "KnowledgeEngine-Crawler/1.0 (+https://github.com/knowledge-engine/bot)"
)

# Page limit used when a crawl job is started without one
DEFAULT_CRAWL_PAGE_LIMIT = 50

# Max depth value meaning "no depth limit"
UNBOUNDED_CRAWL_DEPTH = -1

# Re-read job status from the store every N attempted URLs
CRAWL_CANCEL_CHECK_INTERVAL_PAGES = 10

# Persist running counters every N attempted URLs
CRAWL_PROGRESS_INTERVAL_PAGES = 5

# Delay between page fetches to be polite to target servers (seconds)
POLITE_REQUEST_DELAY_SECONDS = 0.0

# =============================================================================
# Chunking Configuration
# =============================================================================

# Target word count per chunk
DEFAULT_CHUNK_SIZE_WORDS = 500

# Words shared between consecutive chunks
DEFAULT_CHUNK_OVERLAP_WORDS = 50

# =============================================================================
# Embedding Configuration
# =============================================================================

# Default embedding vector dimension (matches text-embedding-3-small)
DEFAULT_EMBEDDING_DIMENSIONS = 1536

# Number of texts sent to the embedding provider per request
DEFAULT_EMBEDDING_BATCH_SIZE = 20

# =============================================================================
# RAG / Search Configuration
# =============================================================================

# Default number of chunks to return from semantic search
DEFAULT_SEARCH_RESULT_LIMIT = 5

# Results must score strictly above this cosine similarity to be used
RAG_RELEVANCE_THRESHOLD = 0.3

# =============================================================================
# Job Queue Configuration
# =============================================================================

CRAWL_QUEUE_NAME = "crawl-queue"
TRAINING_QUEUE_NAME = "training-queue"

# Crawl jobs: 3 attempts, exponential backoff starting at 5s
CRAWL_JOB_ATTEMPTS = 3
CRAWL_JOB_BACKOFF_SECONDS = 5.0

# Training jobs: 3 attempts, exponential backoff starting at 3s
TRAINING_JOB_ATTEMPTS = 3
TRAINING_JOB_BACKOFF_SECONDS = 3.0

# Worker tasks per queue for the in-process queue
DEFAULT_JOB_QUEUE_CONCURRENCY = 2

# =============================================================================
# Chat Configuration
# =============================================================================

DEFAULT_CHAT_TEMPERATURE = 0.7

# =============================================================================
# Pagination
# =============================================================================

DEFAULT_PAGE_SIZE = 20
