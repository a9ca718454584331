"""
Database models package.
All models are exported here for easy import.
"""
from app.models.share import ContentType, Share
from app.models.api_key import ApiKey
from app.models.rate_limit import RateLimitCounter

__all__ = ["ContentType", "Share", "ApiKey", "RateLimitCounter"]
