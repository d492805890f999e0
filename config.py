# config.py
import os
from dotenv import load_dotenv

load_dotenv()

MONGODB_URI = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
MONGODB_DB = os.getenv("MONGODB_DB", "course_db")
# Standalone mongod has no transaction support
MONGODB_TRANSACTIONS = os.getenv("MONGODB_TRANSACTIONS", "true").lower() in ("1", "true", "yes")

JWT_SECRET = os.getenv("JWT_SECRET", "your-secret-key")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

OBJECT_STORE_URL = os.getenv("OBJECT_STORE_URL", "http://localhost:9000/blobs")
OBJECT_STORE_TOKEN = os.getenv("OBJECT_STORE_TOKEN", "")
OBJECT_STORE_TIMEOUT = float(os.getenv("OBJECT_STORE_TIMEOUT", "30"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

MB = 1024 * 1024
MAX_VIDEO_SIZE = 50 * MB
MAX_FILE_SIZE = 10 * MB
MAX_IMAGE_SIZE = 5 * MB

IMAGE_TYPES = ["image/jpeg", "image/png", "image/jpg", "image/gif", "image/webp"]
ALLOWED_UPLOAD_TYPES = {
    "pdf": ["application/pdf"],
    "ppt": [
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "application/vnd.oasis.opendocument.presentation",
    ],
    "video": ["video/mp4", "video/webm", "video/ogg", "video/avi", "video/mov", "video/wmv"],
    "file": [
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/zip",
        "text/plain",
    ],
    "image": IMAGE_TYPES,
}
MAX_UPLOAD_SIZE = {
    "pdf": MAX_FILE_SIZE,
    "ppt": MAX_FILE_SIZE,
    "video": MAX_VIDEO_SIZE,
    "file": MAX_FILE_SIZE,
    "image": MAX_IMAGE_SIZE,
}
UPLOAD_PATHS = {
    "pdf": "syllabus-pdfs",
    "ppt": "syllabus-ppts",
    "video": "syllabus-videos",
    "file": "syllabus-files",
}
ARTICLE_IMAGE_PATH = "article-images"
