from pymongo import MongoClient

from config import settings
from repositories import ensure_indexes

client = MongoClient(settings.MONGO_URI, tz_aware=True)
db = client[settings.MONGO_DB]

users = db["users"]
transactions = db["transactions"]
admin_logs = db["admin_logs"]
api_settings = db["api_settings"]

ensure_indexes(db)
