"""
Constants for Steam authentication, content resolution and depot downloads
"""

# Default application (Stardew Valley) and platform
DEFAULT_APP_ID = 413150
DEFAULT_TARGET_OS = "linux"
DEFAULT_BRANCH = "public"

PLATFORM_WINDOWS = "windows"
PLATFORM_MAC = "macos"
PLATFORM_LINUX = "linux"

PLATFORMS = [PLATFORM_WINDOWS, PLATFORM_MAC, PLATFORM_LINUX]

# Default locations
DEFAULT_SESSION_DIR = "/data/steam-session"
DEFAULT_GAME_DIR = "/data/game"

# Event pump interval (seconds)
POLL_INTERVAL = 0.05

# Connection
CONNECT_TIMEOUT = 30

# Token login retry schedule: attempt n waits LOGIN_BACKOFF_SECONDS * n
LOGIN_MAX_ATTEMPTS = 5
LOGIN_BACKOFF_SECONDS = 5
LOGIN_ATTEMPT_TIMEOUT = 30

# Encrypted app ticket
TICKET_TIMEOUT = 30

# CDN
CDN_MAX_CANDIDATES = 5
DEFAULT_TIMEOUT = 30

# Chunk download retry schedule: attempt n waits CHUNK_BACKOFF_SECONDS * n
CHUNK_MAX_ATTEMPTS = 3
CHUNK_BACKOFF_SECONDS = 1

# Progress is reported every N processed files
PROGRESS_EVERY_FILES = 100

# Read size when validating files already on disk (1MB)
CHUNK_READ_SIZE = 1024 * 1024

# Persistence
SESSION_FILE_TEMPLATE = "session-{username}.json"
SESSION_FILE_GLOB = "session-*.json"
MARKER_FILE_TEMPLATE = ".download-manifest-{app_id}"
PARTIAL_SUFFIX = ".partial"

# Depot file flags (EDepotFileFlag)
DEPOT_FLAG_DIRECTORY = 64

# Files not needed by a dedicated server (locale fonts, audio banks, translations)
SKIP_PATTERNS = [
    r"Content/XACT/Wave Bank\.xwb",
    r"Content/XACT/Wave Bank\(1\.4\)\.xwb",
    r"Content/Fonts/Chinese.*",
    r"Content/Fonts/Korean.*",
    r"Content/Fonts/Japanese.*",
    r"\.(de-DE|es-ES|fr-FR|hu-HU|it-IT|ja-JP|ko-KR|pt-BR|ru-RU|tr-TR|zh-CN)\.xnb$",
]

# User agent
USER_AGENT = "steam-depot/{version} (Python)"
