"""MongoDB Client - Connection and Collection Management"""
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel
from pymongo import MongoClient as PyMongoClient
from pymongo.database import Database
from pymongo.collection import Collection
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import ConnectionFailure, PyMongoError

from ..config.settings import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Global client instance
_client: Optional[PyMongoClient] = None
_database: Optional[Database] = None


def get_client() -> PyMongoClient:
    """Get or create MongoDB client"""
    global _client
    if _client is None:
        logger.info(f"Connecting to MongoDB: {settings.mongo_uri}")
        _client = PyMongoClient(
            settings.mongo_uri,
            serverSelectionTimeoutMS=5000,
            connectTimeoutMS=5000,
            socketTimeoutMS=30000,
            tz_aware=True,
        )
        try:
            _client.admin.command("ping")
            logger.info("MongoDB connection successful")
        except ConnectionFailure as e:
            logger.error(f"MongoDB connection failed: {e}")
            raise
    return _client


def get_database() -> Database:
    """Get the application database"""
    global _database
    if _database is None:
        client = get_client()
        _database = client[settings.mongo_db]
        logger.info(f"Using database: {settings.mongo_db}")
    return _database


def get_collection(name: str) -> Collection:
    """Get a collection from the database"""
    return get_database()[name]


def close_connection() -> None:
    """Close MongoDB connection"""
    global _client, _database
    if _client is not None:
        _client.close()
        _client = None
        _database = None
        logger.info("MongoDB connection closed")


def to_plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value


def to_document(model: BaseModel, key: str) -> Dict[str, Any]:
    """Dump a model for storage, keyed by one of its id fields"""
    doc = to_plain(model.model_dump())
    doc["_id"] = doc[key]
    return doc


def from_document(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Strip Mongo's _id from a stored document"""
    if doc is None:
        return None
    doc.pop("_id", None)
    return doc


def create_indexes() -> None:
    """Create all required indexes"""
    db = get_database()
    logger.info("Creating MongoDB indexes...")

    # Workflow definitions
    workflows = db["workflows"]
    workflows.create_index("workflow_id", unique=True)
    workflows.create_index("code")
    workflows.create_index([("is_active", ASCENDING), ("match_config.record_type", ASCENDING)])
    workflows.create_index("deleted_at")

    workflow_states = db["workflow_states"]
    workflow_states.create_index("state_id", unique=True)
    workflow_states.create_index([("workflow_id", ASCENDING), ("sort_order", ASCENDING)])

    workflow_transitions = db["workflow_transitions"]
    workflow_transitions.create_index("transition_id", unique=True)
    workflow_transitions.create_index([("workflow_id", ASCENDING), ("from_state_id", ASCENDING)])

    # Cases
    cases = db["cases"]
    cases.create_index("case_id", unique=True)
    cases.create_index("case_number", unique=True)
    cases.create_index([("workflow_id", ASCENDING), ("current_state_id", ASCENDING)])
    cases.create_index("pending_history.history_id", sparse=True)
    cases.create_index("pending_actions.outbox_id", sparse=True)
    cases.create_index("updated_at", background=True)

    case_comments = db["case_comments"]
    case_comments.create_index("comment_id", unique=True)
    case_comments.create_index([("case_id", ASCENDING), ("created_at", ASCENDING)])

    # Transition history (append-only)
    history = db["transition_history"]
    history.create_index("history_id", unique=True)
    history.create_index([("case_id", ASCENDING), ("revision_number", ASCENDING)], unique=True)
    history.create_index("correlation_id")

    # Directory reference data
    db["roles"].create_index("role_id", unique=True)
    db["roles"].create_index("code", unique=True)
    db["classifications"].create_index("classification_id", unique=True)
    db["classifications"].create_index("name")
    db["locations"].create_index("location_id", unique=True)
    db["locations"].create_index("code")
    db["departments"].create_index("department_id", unique=True)
    db["departments"].create_index("code", unique=True)
    db["users"].create_index("user_id", unique=True)
    db["users"].create_index("email", unique=True)

    # Outboxes
    action_outbox = db["action_outbox"]
    action_outbox.create_index("outbox_id", unique=True)
    action_outbox.create_index([("status", ASCENDING), ("next_retry_at", ASCENDING)])
    action_outbox.create_index("history_id")
    action_outbox.create_index("locked_until")

    notification_outbox = db["notification_outbox"]
    notification_outbox.create_index("notification_id", unique=True)
    notification_outbox.create_index([("status", ASCENDING), ("created_at", ASCENDING)])
    notification_outbox.create_index("case_id")

    inapp = db["inapp_notifications"]
    inapp.create_index("notification_id", unique=True)
    inapp.create_index([("recipient_user_id", ASCENDING), ("created_at", DESCENDING)])

    logger.info("MongoDB indexes created successfully")


def health_check() -> Dict[str, Any]:
    """Check MongoDB health"""
    try:
        get_database().command("ping")
        return {
            "status": "healthy",
            "database": settings.mongo_db,
            "connection": "ok"
        }
    except PyMongoError as e:
        logger.error(f"MongoDB health check failed: {e}")
        return {
            "status": "unhealthy",
            "database": settings.mongo_db,
            "error": str(e)
        }
