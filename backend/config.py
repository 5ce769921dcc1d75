import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///tictactoe.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # Most recent chat entries kept per session
    CHAT_LOG_LIMIT = int(os.environ.get('CHAT_LOG_LIMIT', '50'))
    # Records returned by the history listing
    HISTORY_LIMIT = int(os.environ.get('HISTORY_LIMIT', '20'))
    # Durable writes: attempts and first backoff delay (seconds, doubles per retry)
    PERSIST_MAX_ATTEMPTS = int(os.environ.get('PERSIST_MAX_ATTEMPTS', '5'))
    PERSIST_RETRY_DELAY_SEC = float(os.environ.get('PERSIST_RETRY_DELAY_SEC', '0.5'))
    # Created sessions nobody joins are dropped after this many seconds (0 keeps them)
    UNJOINED_SESSION_TTL_SEC = int(os.environ.get('UNJOINED_SESSION_TTL_SEC', '3600'))
    # Socket.IO liveness (seconds); a missed pong feeds the disconnect path
    PING_INTERVAL = int(os.environ.get('PING_INTERVAL', '25'))
    PING_TIMEOUT = int(os.environ.get('PING_TIMEOUT', '20'))
