"""
Runtime configuration read from the environment.
"""
import os

# Local queue
LOCAL_DATABASE_URL = os.getenv("LOCAL_DATABASE_URL", "sqlite:///./attendance_queue.db")

# Firebase Realtime Database
FIREBASE_CREDENTIALS = os.getenv("FIREBASE_CREDENTIALS", "firebase_credentials.json")
FIREBASE_DATABASE_URL = os.getenv("FIREBASE_DATABASE_URL", "")
FIREBASE_COLLECTION = os.getenv("FIREBASE_COLLECTION", "attendance")

# Retry policy (seconds)
SYNC_BACKOFF_BASE = float(os.getenv("SYNC_BACKOFF_BASE", "2"))
SYNC_BACKOFF_CAP = float(os.getenv("SYNC_BACKOFF_CAP", "60"))

# Logs
SYNC_LOG_FILE = os.getenv("SYNC_LOG_FILE", "sync.log")
REQUEST_LOG_FILE = os.getenv("REQUEST_LOG_FILE", "request_performance.log")
