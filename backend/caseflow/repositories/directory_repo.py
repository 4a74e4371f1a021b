"""Directory Repository - Roles, classifications, locations, departments and users"""
import re
from typing import Any, Dict, List, Optional
from pymongo.collection import Collection
from pymongo import ASCENDING

from .mongo_client import get_collection, to_document, from_document
from ..domain.models import Role, Classification, Location, Department, DirectoryUser
from ..utils.logger import get_logger

logger = get_logger(__name__)


def _exact_ci(value: str) -> Dict[str, Any]:
    """Case-insensitive exact match"""
    return {"$regex": f"^{re.escape(value)}$", "$options": "i"}


class DirectoryRepository:
    """Repository for directory reference data used by matching and assignment"""

    def __init__(self):
        self._roles: Collection = get_collection("roles")
        self._classifications: Collection = get_collection("classifications")
        self._locations: Collection = get_collection("locations")
        self._departments: Collection = get_collection("departments")
        self._users: Collection = get_collection("users")

    def _upsert(self, collection: Collection, key: str, doc: Dict[str, Any]) -> None:
        collection.replace_one({key: doc[key]}, doc, upsert=True)

    # =========================================================================
    # Roles
    # =========================================================================

    def save_role(self, role: Role) -> Role:
        self._upsert(self._roles, "role_id", to_document(role, "role_id"))
        return role

    def get_role(self, role_id: str) -> Optional[Role]:
        doc = from_document(self._roles.find_one({"role_id": role_id}))
        return Role.model_validate(doc) if doc else None

    def get_role_by_code(self, code: str) -> Optional[Role]:
        doc = from_document(self._roles.find_one({"code": _exact_ci(code)}))
        return Role.model_validate(doc) if doc else None

    # =========================================================================
    # Classifications & Locations
    # =========================================================================

    def save_classification(self, classification: Classification) -> Classification:
        self._upsert(self._classifications, "classification_id", to_document(classification, "classification_id"))
        return classification

    def get_classification(self, classification_id: str) -> Optional[Classification]:
        doc = from_document(self._classifications.find_one({"classification_id": classification_id}))
        return Classification.model_validate(doc) if doc else None

    def get_classification_by_name(self, name: str) -> Optional[Classification]:
        doc = from_document(self._classifications.find_one({"name": _exact_ci(name)}))
        return Classification.model_validate(doc) if doc else None

    def save_location(self, location: Location) -> Location:
        self._upsert(self._locations, "location_id", to_document(location, "location_id"))
        return location

    def get_location(self, location_id: str) -> Optional[Location]:
        doc = from_document(self._locations.find_one({"location_id": location_id}))
        return Location.model_validate(doc) if doc else None

    def get_location_by_code(self, code: str) -> Optional[Location]:
        """Match on code, falling back to name for locations without one"""
        doc = self._locations.find_one({"code": _exact_ci(code)})
        if doc is None:
            doc = self._locations.find_one({"name": _exact_ci(code)})
        doc = from_document(doc)
        return Location.model_validate(doc) if doc else None

    # =========================================================================
    # Departments
    # =========================================================================

    def save_department(self, department: Department) -> Department:
        self._upsert(self._departments, "department_id", to_document(department, "department_id"))
        return department

    def get_department(self, department_id: str) -> Optional[Department]:
        doc = from_document(self._departments.find_one({"department_id": department_id}))
        return Department.model_validate(doc) if doc else None

    def get_department_by_code(self, code: str) -> Optional[Department]:
        doc = from_document(self._departments.find_one({"code": _exact_ci(code)}))
        return Department.model_validate(doc) if doc else None

    def list_active_departments(self) -> List[Department]:
        cursor = self._departments.find({"is_active": True}).sort("name", ASCENDING)
        return [Department.model_validate(from_document(doc)) for doc in cursor]

    # =========================================================================
    # Users
    # =========================================================================

    def save_user(self, user: DirectoryUser) -> DirectoryUser:
        doc = to_document(user, "user_id")
        doc["email"] = doc["email"].lower()
        self._upsert(self._users, "user_id", doc)
        return user

    def get_user(self, user_id: str) -> Optional[DirectoryUser]:
        doc = from_document(self._users.find_one({"user_id": user_id}))
        return DirectoryUser.model_validate(doc) if doc else None

    def get_user_by_email(self, email: str) -> Optional[DirectoryUser]:
        doc = from_document(self._users.find_one({"email": email.lower()}))
        return DirectoryUser.model_validate(doc) if doc else None

    def get_users(self, user_ids: List[str]) -> List[DirectoryUser]:
        if not user_ids:
            return []
        cursor = self._users.find({"user_id": {"$in": list(user_ids)}})
        return [DirectoryUser.model_validate(from_document(doc)) for doc in cursor]

    def list_active_users(self, role_id: Optional[str] = None) -> List[DirectoryUser]:
        """Active users, optionally only those holding a role, ordered by display name"""
        query: Dict[str, Any] = {"is_active": True}
        if role_id:
            query["role_ids"] = role_id
        cursor = self._users.find(query).sort("display_name", ASCENDING)
        return [DirectoryUser.model_validate(from_document(doc)) for doc in cursor]
