DEFAULT_DB_PATH = "workbook_history.db"
APP_NAME = "ACT Workbook AI Service"
APP_VERSION = "1.0.0"
DEFAULT_CORS_ALLOW_ORIGINS = [
	"http://localhost",
	"http://127.0.0.1",
	"http://localhost:3000",
	"http://localhost:5000",
]
DEFAULT_TRUSTED_HOSTS = [
	"127.0.0.1",
	"localhost",
	"testserver",
]
SQLITE_BUSY_TIMEOUT_MS = 5000

USER_ID_HEADER = "X-User-ID"

MIN_CHAPTER_ID = 1
MAX_CHAPTER_ID = 7

ASSESSMENT_HISTORY_LIMIT = 5
PROGRESS_HISTORY_LIMIT = 10
INSIGHT_HISTORY_LIMIT = 5

MAX_CONVERSATION_MESSAGE_CHARS = 2000
MAX_PROMPT_RESPONSE_CHARS = 5000

CONVERSATION_PLACEHOLDER_TEXT = "I understand. Could you tell me more about what you're experiencing?"
